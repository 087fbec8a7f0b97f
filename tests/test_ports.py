"""Tests for matrix port tables."""

import pytest

from custom_components.vda_ir_panel.ports import PortTable, default_port_name, normalize_index


class TestNormalizeIndex:
    """Tests for normalize_index."""

    def test_accepts_integers_and_numeric_strings(self):
        """Test valid indices are returned as ints."""
        assert normalize_index(3) == 3
        assert normalize_index("7") == 7

    @pytest.mark.parametrize("value", [0, -1, True, "abc", None])
    def test_rejects_invalid(self, value):
        """Test indices below 1 and non-integers are rejected."""
        with pytest.raises(ValueError):
            normalize_index(value)


class TestDefaults:
    """Tests for default tables and naming."""

    def test_eight_ports_when_none_reported(self):
        """Test a table without a reported count gets ports 1..8."""
        table = PortTable.with_defaults("input")
        assert [port.index for port in table] == list(range(1, 9))
        assert [port.name for port in table][:2] == ["Input 1", "Input 2"]

    def test_reported_count(self):
        """Test the reported count sizes the default table."""
        table = PortTable.with_defaults("output", 4)
        assert len(table) == 4
        assert table.get(4).name == "Output 4"

    def test_default_port_name(self):
        """Test default names use the capitalized side and index."""
        assert default_port_name("output", 3) == "Output 3"

    def test_from_records_without_records_uses_defaults(self):
        """Test an empty record list falls back to the default table."""
        assert len(PortTable.from_records("input", [])) == 8
        assert len(PortTable.from_records("input", None, default_count=2)) == 2

    def test_from_records_fills_missing_names_and_indices(self):
        """Test missing names get defaults and missing indices use position."""
        table = PortTable.from_records("output", [{"name": "Projector"}, {"index": 5}])
        assert table.get(1).name == "Projector"
        assert table.get(5).name == "Output 5"
        assert 2 not in table

    def test_from_records_reads_capability(self):
        """Test can_output false marks the port input-only."""
        table = PortTable.from_records("output", [{"index": 1, "can_output": False}, {"index": 2}])
        assert table.get(1).input_only is True
        assert table.get(2).input_only is False

    def test_records_carry_capability(self):
        """Test written records keep the input-only flag so re-reading them preserves it."""
        table = PortTable.from_records("output", [{"index": 1, "can_output": False}, {"index": 2}])
        records = table.as_records()

        assert records[0]["input_only"] is True
        assert PortTable.from_records("output", records).get(1).input_only is True

    def test_empty_name_resets_to_default(self):
        """Test clearing a name restores the default."""
        table = PortTable.with_defaults("input")
        table.upsert(2, name="Apple TV")
        table.upsert(2, name="")
        assert table.get(2).name == "Input 2"


class TestDeviceUniqueness:
    """Tests that a device sits on at most one port of a table."""

    def test_assigning_moves_device(self):
        """Test assigning a device to a second port clears the first."""
        table = PortTable.with_defaults("input")
        table.upsert(1, device_id="bluray")
        table.upsert(3, device_id="bluray")
        assert table.get(1).device_id is None
        assert table.port_for("bluray") == 3
        assert table.resolve_device_for(3) == "bluray"

    def test_sequence_keeps_devices_unique(self):
        """Test an arbitrary sequence of assignments never duplicates a device."""
        table = PortTable.with_defaults("output")
        for index, device_id in [(1, "tv"), (2, "proj"), (3, "tv"), (2, None), (5, "proj"), (1, "proj")]:
            table.upsert(index, device_id=device_id)
            assigned = [port.device_id for port in table if port.device_id]
            assert len(assigned) == len(set(assigned))
        assert table.assigned_devices() == {"tv": 3, "proj": 1}

    def test_blank_device_id_clears(self):
        """Test a blank device id unassigns the port."""
        table = PortTable.with_defaults("input")
        table.upsert(1, device_id="cable")
        table.upsert(1, device_id="  ")
        assert table.get(1).device_id is None

    def test_copy_is_independent(self):
        """Test editing a copy leaves the original alone."""
        table = PortTable.with_defaults("input")
        table.upsert(1, device_id="cable")
        clone = table.copy()
        clone.upsert(1, device_id=None)
        assert table.get(1).device_id == "cable"

    def test_get_invalid_index_returns_none(self):
        """Test get tolerates invalid indices."""
        table = PortTable.with_defaults("input")
        assert table.get(0) is None
        assert table.get("x") is None
        assert table.get(9) is None
