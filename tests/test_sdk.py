import pytest

from fabcli.errors import ConfigError
from fabcli.sdk import ProviderLoadError, ProviderRef, SdkProvider, load_provider

_PROVIDER_SOURCE = """
from fabcli.sdk import SdkProvider


class FileProvider(SdkProvider):
    def channel_client(self, channel_id, *, org_ids=()):
        return None

    def peers(self, urls):
        return []
"""


def test_load_provider_from_module_and_class() -> None:
    provider = load_provider("fakes:FakeProvider", {"a": 1})
    assert isinstance(provider, SdkProvider)
    assert provider.provider_args == {"a": 1}


def test_load_provider_from_file_picks_single_class(tmp_path) -> None:
    path = tmp_path / "provider.py"
    path.write_text(_PROVIDER_SOURCE, encoding="utf-8")

    provider = load_provider(str(path))
    assert type(provider).__name__ == "FileProvider"

    explicit = load_provider(f"{path}:FileProvider")
    assert type(explicit).__name__ == "FileProvider"


def test_load_provider_errors(tmp_path) -> None:
    for ref in ("no_colon_module", "fakes:", "fakes:Missing", "fakes:FakePeer", "no_such_module_xyz:Provider", str(tmp_path / "missing.py")):
        with pytest.raises(ProviderLoadError):
            load_provider(ref)
    assert issubclass(ProviderLoadError, ConfigError)


def test_file_with_several_providers_needs_a_class_name(tmp_path) -> None:
    path = tmp_path / "two.py"
    path.write_text(_PROVIDER_SOURCE + "\n\nclass OtherProvider(FileProvider):\n    pass\n", encoding="utf-8")

    with pytest.raises(ProviderLoadError, match="FileProvider, OtherProvider"):
        load_provider(str(path))
    assert type(load_provider(f"{path}:OtherProvider")).__name__ == "OtherProvider"


def test_provider_ref_parsing() -> None:
    assert ProviderRef.parse("pkg.mod:Cls") == ProviderRef("pkg.mod", "Cls")
    assert ProviderRef.parse("/opt/p.py") == ProviderRef("/opt/p.py")
    assert ProviderRef.parse("/opt/p.py:Cls").is_file
    assert str(ProviderRef.parse("pkg.mod:Cls")) == "pkg.mod:Cls"


def test_default_event_service_is_not_implemented() -> None:
    provider = load_provider("fakes:FakeProvider")
    with pytest.raises(NotImplementedError):
        SdkProvider.event_service(provider, "mychannel")
