import pytest

from shared import config as cfg


@pytest.fixture
def reload(monkeypatch):
    def apply(**env):
        for key, value in env.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, value)
        return cfg.reload_config()

    yield apply
    monkeypatch.undo()
    cfg.reload_config()


def test_sheet_tabs_default_and_override(reload):
    reload(JOBS_TAB="Work Orders", CLIENTS_TAB="  ")

    assert cfg.get_sheet_tab("jobs") == "Work Orders"
    assert cfg.get_sheet_tab("clients") == "Clients"
    assert cfg.get_board_state_tab() == "BoardState"
    with pytest.raises(KeyError):
        cfg.get_sheet_tab("leads")


def test_role_sets_accept_mentions_and_separators(reload):
    reload(ADMIN_ROLE_IDS="<@&11>, 12", TEAM_LEAD_ROLE_IDS="21 22", STAFF_ROLE_IDS=None)

    assert cfg.get_admin_role_ids() == {11, 12}
    assert cfg.get_team_lead_role_ids() == {21, 22}
    assert cfg.get_staff_role_ids() == set()


def test_guild_allow_list(reload):
    reload(GUILD_IDS=None)
    assert cfg.is_guild_allowed(1)

    reload(GUILD_IDS="5,6")
    assert cfg.is_guild_allowed(5)
    assert not cfg.is_guild_allowed(7)
    assert not cfg.is_guild_allowed(None)


def test_numeric_settings_fall_back_and_clamp(reload):
    reload(
        ENTITY_CACHE_TTL_SEC="soon",
        INVOICE_NUMBER_START="0",
        THREAD_SETTLE_DELAY_SEC="60",
        CRM_SHEET_ID=" sheet-123 ",
    )

    assert cfg.get_entity_cache_ttl_sec() == 300
    assert cfg.get_invoice_number_start() == 1
    assert cfg.get_thread_settle_delay_sec() == 10.0
    assert cfg.get_crm_sheet_id() == "sheet-123"


def test_snapshot_redacts_secrets(reload):
    reload(DISCORD_TOKEN="super-secret-token-value")

    snapshot = cfg.get_config_snapshot()

    assert snapshot["CRM_SHEET_ID"]
    assert "super-secret-token-value" not in cfg._redact_value("DISCORD_TOKEN", snapshot["DISCORD_TOKEN"])
