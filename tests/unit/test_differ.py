"""
Unit tests for change classification

Tests verify:
- Insert, update and delete classification by key
- Unchanged rows produce nothing
- Keyless multiset matching with duplicates
"""

from standby_sync.differ import diff, diff_multiset
from standby_sync.fingerprint import render_key, row_digest


class TestDiff:
    """Test diff"""

    def test_empty_inputs(self):
        """Test two empty scans give an empty change set"""
        changes = diff({}, {})

        assert changes.is_empty
        assert changes.total == 0

    def test_identical_maps(self):
        """Test equal digests are left alone"""
        data = {"1": "aaa", "2": "bbb"}

        assert diff(data, dict(data)).is_empty

    def test_classification(self):
        """Test every kind of change in one range"""
        source = {"1": "aaa", "2": "bbb", "4": "ddd"}
        target = {"1": "aaa", "2": "xxx", "3": "ccc"}

        changes = diff(source, target)

        assert changes.insert == {"4"}
        assert changes.update == {"2"}
        assert changes.delete == {"3"}
        assert str(changes) == "+1 / ~1 / -1"

    def test_orders_rows(self):
        """Test digests of real rows: 1 missing, 2 equal, 3 changed, 4 extra"""
        source_rows = {1: (1, "open", 10), 2: (2, "paid", 20), 3: (3, "paid", 30)}
        target_rows = {2: (2, "paid", 20), 3: (3, "open", 30), 4: (4, "void", 40)}
        source = {render_key((k,)): row_digest(row) for k, row in source_rows.items()}
        target = {render_key((k,)): row_digest(row) for k, row in target_rows.items()}

        changes = diff(source, target)

        assert changes.insert == {"1"}
        assert changes.update == {"3"}
        assert changes.delete == {"4"}

    def test_sets_are_disjoint(self):
        """Test no key lands in two sets"""
        source = {str(i): f"s{i % 3}" for i in range(20)}
        target = {str(i): f"s{i % 2}" for i in range(10, 30)}

        changes = diff(source, target)

        assert not changes.insert & changes.update
        assert not changes.insert & changes.delete
        assert not changes.update & changes.delete

    def test_empty_source_deletes_everything(self):
        """Test target-only rows are all deletes"""
        changes = diff({}, {"1": "a", "2": "b"})

        assert changes.delete == {"1", "2"}
        assert not changes.insert and not changes.update

    def test_upsert_keys_order(self):
        """Test inserts come before updates, each sorted"""
        changes = diff({"b": "1", "a": "1", "z": "2"}, {"z": "1"})

        assert changes.upsert_keys == ["a", "b", "z"]


class TestDiffMultiset:
    """Test diff_multiset for keyless tables"""

    def test_matching_rows_cancel(self):
        """Test rows with equal content on both sides need nothing"""
        source = {"(0,1)": "d1", "(0,2)": "d2"}
        target = {"(5,1)": "d2", "(5,2)": "d1"}

        assert diff_multiset(source, target) == ([], [])

    def test_changed_row_is_delete_plus_insert(self):
        """Test a modified keyless row is replaced"""
        source = {"(0,1)": "new"}
        target = {"(3,7)": "old"}

        assert diff_multiset(source, target) == (["(0,1)"], ["(3,7)"])

    def test_duplicates_counted(self):
        """Test multiplicity is preserved"""
        source = {"(0,1)": "dup", "(0,2)": "dup", "(0,3)": "dup"}
        target = {"(1,1)": "dup"}

        inserts, deletes = diff_multiset(source, target)

        assert len(inserts) == 2
        assert deletes == []

    def test_surplus_target_duplicates_deleted(self):
        """Test extra target copies are removed one for one"""
        source = {"(0,1)": "dup"}
        target = {"(1,1)": "dup", "(1,2)": "dup"}

        inserts, deletes = diff_multiset(source, target)

        assert inserts == []
        assert deletes == ["(1,1)"]
