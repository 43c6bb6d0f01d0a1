from modules.crm import ids


def test_code_from_name_pads_and_falls_back():
    assert ids.code_from_name("Acme Co") == "ACME"
    assert ids.code_from_name("Bo") == "BOXX"
    assert ids.code_from_name("123 !!") == "GENX"
    assert ids.code_from_name(None) == "GENX"


def test_allocate_client_code_collision_keeps_three_chars():
    assert ids.allocate_client_code("Acme Co", []) == "ACME"
    assert ids.allocate_client_code("Acme Co", ["acme"]) == "ACM1"
    assert ids.allocate_client_code("Acme Mining", ["ACME", "ACM1", "ACM2"]) == "ACM3"


def test_allocate_client_code_honours_requested_code():
    assert ids.allocate_client_code("Acme Co", ["ACME"], requested="wb-01") == "WB01"
    assert ids.allocate_client_code("Acme Co", ["WB01"], requested="WB01") == "WB02"


def test_next_job_id_uses_highest_sequence_not_count():
    assert ids.next_job_id("ACME", []) == "ACME-001"
    assert ids.next_job_id("ABCD", ["ABCD-001", "ABCD-002"]) == "ABCD-003"
    # a gap and another client's ids are ignored
    assert ids.next_job_id("ABCD", ["ABCD-007", "ABCE-010", "ABCD-x"]) == "ABCD-008"


def test_next_task_id_is_scoped_to_job():
    existing = ["ACME-001-T1", "ACME-001-T4", "ACME-002-T9"]
    assert ids.next_task_id("ACME-001", existing) == "ACME-001-T5"
    assert ids.next_task_id("ACME-003", existing) == "ACME-003-T1"


def test_next_invoice_id_respects_start_floor():
    assert ids.next_invoice_id([]) == "000001"
    assert ids.next_invoice_id(["000001", "000002"]) == "000003"
    assert ids.next_invoice_id(["000002"], start=1000) == "001000"
    assert ids.next_invoice_id(["001500"], start=1000) == "001501"


def test_generate_auth_code_shape_and_uniqueness():
    taken = set()
    for _ in range(50):
        code = ids.generate_auth_code(taken)
        assert len(code) == ids.AUTH_CODE_LENGTH
        assert set(code) <= set(ids.AUTH_CODE_ALPHABET)
        assert code not in taken
        taken.add(code)
