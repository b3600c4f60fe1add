"""
Tests for the verifier state machine.
"""

import pytest

from doorlock.codegen import MAX_COUNTER, generate
from doorlock.errors import CounterExhaustedError, StorageError
from doorlock.protocol import Verdict
from doorlock.store import MemoryCounterStore, NvramCounterStore
from doorlock.validator import Validator

from .conftest import SCENARIO_SECRET


def code_for(counter):
    return generate(SCENARIO_SECRET, counter)


class FailingStore(MemoryCounterStore):
    """Loads fine, fails every write."""

    def store(self, value):
        raise StorageError("flash write failed")


class TestValidate:
    """Tests for accept / resync / reject."""

    def test_accepts_expected_code(self, config, verifier_store):
        validator = Validator(config, verifier_store)
        assert validator.validate(code_for(0)) is Verdict.ACCEPTED
        assert verifier_store.load() == 1
        assert validator.counter == 1

    @pytest.mark.parametrize("offset", [1, 5, 10])
    def test_resync_within_window(self, config, offset):
        store = MemoryCounterStore(100)
        validator = Validator(config, store)
        assert validator.validate(code_for(100 + offset)) is Verdict.ACCEPTED
        assert store.load() == 100 + offset + 1

    def test_rejects_just_past_window(self, config):
        store = MemoryCounterStore(100)
        validator = Validator(config, store)
        assert validator.validate(code_for(111)) is Verdict.REJECTED_INVALID_CODE
        assert store.load() == 100

    def test_no_replay(self, config, verifier_store):
        validator = Validator(config, verifier_store)
        code = code_for(3)
        assert validator.validate(code) is Verdict.ACCEPTED
        assert validator.validate(code) is Verdict.REJECTED_INVALID_CODE
        assert verifier_store.load() == 4

    def test_codes_behind_counter_rejected(self, config):
        store = MemoryCounterStore(20)
        validator = Validator(config, store)
        assert validator.validate(code_for(19)) is Verdict.REJECTED_INVALID_CODE
        assert store.load() == 20

    def test_zero_window_only_accepts_exact(self, config, verifier_store):
        validator = Validator(config.model_copy(update={"window": 0}), verifier_store)
        assert validator.validate(code_for(1)) is Verdict.REJECTED_INVALID_CODE
        assert validator.validate(code_for(0)) is Verdict.ACCEPTED

    def test_sequential_codes(self, config, verifier_store):
        validator = Validator(config, verifier_store)
        for counter in range(25):
            assert validator.validate(code_for(counter)) is Verdict.ACCEPTED
        assert verifier_store.load() == 25

    def test_earliest_match_wins(self, config, verifier_store):
        class CollidingDeriver:
            """Counters 3 and 7 share a code; every other counter maps to itself."""
            digits = 6

            def derive(self, secret, counter):
                return 111111 if counter in (3, 7) else counter

        validator = Validator(config, verifier_store, CollidingDeriver())
        assert validator.validate(111111) is Verdict.ACCEPTED
        assert verifier_store.load() == 4
        # Counter 7 is still ahead in the window and accepts the same code once more.
        assert validator.validate(111111) is Verdict.ACCEPTED
        assert verifier_store.load() == 8

    def test_storage_failure_never_accepts(self, config):
        store = FailingStore()
        validator = Validator(config, store)
        with pytest.raises(StorageError):
            validator.validate(code_for(0))
        assert validator.counter == 0
        assert store.load() == 0

    def test_exhaustion_is_fatal(self, config):
        store = MemoryCounterStore(MAX_COUNTER)
        validator = Validator(config, store)
        with pytest.raises(CounterExhaustedError):
            validator.validate(code_for(MAX_COUNTER))
        assert store.load() == MAX_COUNTER

    def test_state_survives_restart(self, config, tmp_path):
        path = tmp_path / "nvram.bin"
        assert Validator(config, NvramCounterStore(path)).validate(code_for(2)) is Verdict.ACCEPTED
        restarted = Validator(config, NvramCounterStore(path))
        assert restarted.counter == 3
        assert restarted.validate(code_for(2)) is Verdict.REJECTED_INVALID_CODE
        assert restarted.validate(code_for(3)) is Verdict.ACCEPTED


class TestHandleLine:
    """Tests for parsing in front of validation."""

    @pytest.mark.parametrize("line", [b"", "", "12a34", "1234567", None])
    def test_malformed_leaves_cell_untouched(self, config, tmp_path, line):
        path = tmp_path / "nvram.bin"
        NvramCounterStore(path).store(7)
        before = path.read_bytes()
        validator = Validator(config, NvramCounterStore(path))
        assert validator.handle_line(line) is Verdict.REJECTED_MALFORMED
        assert path.read_bytes() == before

    def test_leading_zeros_optional(self, config, verifier_store):
        validator = Validator(config, verifier_store)
        code = code_for(0)
        assert validator.handle_line(str(code).encode()) is Verdict.ACCEPTED

    def test_padded_line(self, config, verifier_store):
        validator = Validator(config, verifier_store)
        assert validator.handle_line(f"{code_for(0):06d}".encode()) is Verdict.ACCEPTED
