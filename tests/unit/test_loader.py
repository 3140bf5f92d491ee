"""
Unit tests for loading handler modules at startup.
"""

import textwrap

import pytest

from jobqueue.errors import ConfigurationError
from jobqueue.payload import PayloadRegistry, default_registry, get_handler, load_registry


@pytest.fixture
def write_module(tmp_path, monkeypatch):
    """Write an importable module into a temporary sys.path entry."""
    monkeypatch.syspath_prepend(str(tmp_path))

    def write(name: str, source: str) -> None:
        (tmp_path / f"{name}.py").write_text(textwrap.dedent(source))

    return write


class TestLoadRegistry:
    """Tests for load_registry."""

    def test_no_modules(self):
        """Test that nothing configured means the default registry."""
        assert load_registry([]) is default_registry

    def test_plain_module_registers_on_default(self, write_module):
        """Test that importing a module runs its default-registry registrations."""
        write_module(
            "loader_default_handlers",
            """
            from jobqueue.payload import PayloadObject, register_handler

            @register_handler("loader_default_cleanup")
            class Cleanup(PayloadObject):
                def perform(self) -> None:
                    pass
            """,
        )

        registry = load_registry(["loader_default_handlers"])

        assert registry is default_registry
        assert get_handler("loader_default_cleanup") is not None

    def test_selects_named_registry(self, write_module):
        """Test that module:attribute picks the application's registry."""
        write_module(
            "loader_app_handlers",
            """
            from jobqueue.payload import PayloadObject, PayloadRegistry

            registry = PayloadRegistry()

            @registry.register("invoice")
            class Invoice(PayloadObject):
                number: int

                def perform(self) -> None:
                    pass
            """,
        )

        registry = load_registry(["loader_app_handlers:registry"])

        assert isinstance(registry, PayloadRegistry)
        assert registry is not default_registry
        assert "invoice" in registry.list_handlers()

    def test_missing_module(self):
        """Test that an unknown module is a configuration error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_registry(["loader_no_such_module"])

    def test_attribute_must_be_registry(self, write_module):
        """Test that the selected attribute must be a PayloadRegistry."""
        write_module("loader_wrong_attr", "registry = {}\n")

        with pytest.raises(ConfigurationError, match="not a PayloadRegistry"):
            load_registry(["loader_wrong_attr:registry"])

    def test_two_registries_rejected(self, write_module):
        """Test that a process cannot select two different registries."""
        for name in ("loader_first", "loader_second"):
            write_module(
                name,
                """
                from jobqueue.payload import PayloadRegistry

                registry = PayloadRegistry()
                """,
            )

        with pytest.raises(ConfigurationError, match="second payload registry"):
            load_registry(["loader_first:registry", "loader_second:registry"])
