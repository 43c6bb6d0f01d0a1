"""Placeholder credentials so ``shared.config`` imports under pytest."""

from __future__ import annotations

import os

# Zero delays keep the reconcilers from sleeping between Discord calls.
TEST_ENV = {
    "DISCORD_TOKEN": "test-token",
    "GSPREAD_CREDENTIALS": "{}",
    "CRM_SHEET_ID": "test-sheet",
    "THREAD_SETTLE_DELAY_SEC": "0",
    "SMART_SYNC_DEBOUNCE_SEC": "0",
}


def apply_required_test_environment() -> None:
    """Fill in any of :data:`TEST_ENV` the caller has not already set."""

    for key, value in TEST_ENV.items():
        os.environ.setdefault(key, value)
