from modules.crm import naming


def test_client_channel_canonical_form():
    name = naming.client_channel("ACME", "Acme Co.")
    assert name.canonical == "🪪-acme-acme-co"
    assert "acme-acme-co" in name.legacy
    assert name.canonical not in name.legacy


def test_client_channel_strips_symbols_from_code():
    assert naming.client_channel_name("WB-01", "Widget & Bolt") == "🪪-wb01-widget-bolt"
    assert naming.client_channel_name("", "") == "🪪-client"


def test_client_channel_respects_discord_limit():
    assert len(naming.client_channel_name("ACME", "x" * 300)) == naming.CHANNEL_NAME_LIMIT


def test_board_names_accept_legacy_forms():
    assert naming.TASK_BOARD.canonical == "📋-task-board"
    assert naming.TASK_BOARD.matches("📋 | task-board")
    assert naming.TASK_BOARD.matches("task-board")
    assert not naming.TASK_BOARD.matches("job-board")


def test_job_thread_name_collapses_whitespace_and_truncates():
    assert naming.job_thread_name("ACME-001", "  Website   redesign ") == "ACME-001 — Website redesign"
    assert naming.job_thread_name("ACME-002", "") == "ACME-002 — Untitled"
    assert len(naming.job_thread_name("ACME-003", "y" * 200)) == naming.THREAD_NAME_LIMIT
