from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeTransport, listing, modrinth_url, version
from mcsplit.catalog import CurseForgeCatalog, ModrinthCatalog, ModUrlResolver, ResolutionOutcome, UrllibTransport
from mcsplit.config import CatalogSource, ModSelection
from mcsplit.mods import (
    DownloadFailed,
    MirrorSourceMissing,
    MissingModsReport,
    MissingReason,
    ModInstaller,
    ModRequest,
    build_requests,
    mirror_mods,
    mod_filename,
)

REQUIRED = ["Controllable", "Splitscreen Support"]


def _installer(transport: FakeTransport, report: MissingModsReport, workers: int = 1) -> ModInstaller:
    resolver = ModUrlResolver(ModrinthCatalog(transport), CurseForgeCatalog(transport, api_key=None))
    return ModInstaller(resolver, transport, report, mc_version="1.21.1", workers=workers)


def test_build_requests_dedupes_in_first_seen_order() -> None:
    selections = [
        ModSelection(id="controllable", name="Controllable (Fabric)"),
        ModSelection(id="fabric-api", name="Fabric API", url="https://cdn/fabric-api.jar"),
        ModSelection(id="controllable", name="Controllable (Fabric)"),
        ModSelection(id="1234", name="Collective", source=CatalogSource.CURSEFORGE, url="null"),
    ]
    requests = build_requests(selections, REQUIRED)
    assert [request.catalog_id for request in requests] == ["controllable", "fabric-api", "1234"]
    assert requests[0].required is True
    assert requests[1].required is False
    assert requests[1].resolved_url == "https://cdn/fabric-api.jar"
    assert requests[2].resolved_url is None
    assert requests[2].source is CatalogSource.CURSEFORGE


def test_mod_filename_replaces_spaces() -> None:
    assert mod_filename("Splitscreen Support") == "Splitscreen_Support.jar"


def test_install_downloads_direct_and_resolved_mods(tmp_path: Path) -> None:
    transport = FakeTransport(
        pages={modrinth_url("cloth"): listing(version(["1.21"], "https://cdn/cloth.jar"))},
        files={"https://cdn/fabric-api.jar": b"api", "https://cdn/cloth.jar": b"cloth"},
    )
    report = MissingModsReport()
    requests = [
        ModRequest("fabric-api", "Fabric API", CatalogSource.MODRINTH, resolved_url="https://cdn/fabric-api.jar"),
        ModRequest("cloth", "Cloth Config", CatalogSource.MODRINTH),
    ]
    _installer(transport, report).install(tmp_path / "mods", requests)

    assert not report
    assert (tmp_path / "mods" / "Fabric_API.jar").read_bytes() == b"api"
    assert (tmp_path / "mods" / "Cloth_Config.jar").read_bytes() == b"cloth"
    assert requests[1].resolved_url == "https://cdn/cloth.jar"
    assert requests[1].resolution.tier == "major-minor"
    # Mods that came with a URL never hit the catalog.
    assert modrinth_url("fabric-api") not in transport.calls


def test_required_and_optional_failures_are_classified(tmp_path: Path) -> None:
    transport = FakeTransport(pages={modrinth_url("controllable"): b"[]", modrinth_url("collective"): b"[]"})
    report = MissingModsReport()
    requests = [
        ModRequest("controllable", "Controllable (Fabric)", CatalogSource.MODRINTH, required=True),
        ModRequest("collective", "Collective", CatalogSource.MODRINTH),
    ]
    _installer(transport, report).install(tmp_path / "mods", requests)

    assert report.names == ["Controllable (Fabric)", "Collective"]
    assert [entry.name for entry in report.required()] == ["Controllable (Fabric)"]
    assert [entry.name for entry in report.optional()] == ["Collective"]
    assert all(entry.reason is MissingReason.UNRESOLVED for entry in report.entries)


def test_download_failure_is_recorded_and_others_continue(tmp_path: Path) -> None:
    transport = FakeTransport(files={"https://cdn/ok.jar": b"ok"})
    report = MissingModsReport()
    requests = [
        ModRequest("broken", "Broken Mod", CatalogSource.MODRINTH, resolved_url="https://cdn/broken.jar"),
        ModRequest("ok", "Fine Mod", CatalogSource.MODRINTH, resolved_url="https://cdn/ok.jar"),
    ]
    _installer(transport, report).install(tmp_path / "mods", requests)

    assert report.names == ["Broken Mod"]
    assert report.entries[0].reason is MissingReason.DOWNLOAD_FAILED
    assert (tmp_path / "mods" / "Fine_Mod.jar").exists()
    assert not (tmp_path / "mods" / "Broken_Mod.jar").exists()


def test_malformed_download_url_is_recorded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("http_proxy", "HTTP_PROXY"):
        monkeypatch.delenv(name, raising=False)
    transport = FakeTransport()
    resolver = ModUrlResolver(ModrinthCatalog(transport), CurseForgeCatalog(transport, api_key=None))
    report = MissingModsReport()
    installer = ModInstaller(resolver, UrllibTransport(), report, mc_version="1.21.1", download_timeout=1)
    requests = [
        ModRequest(
            "spaced",
            "Spaced Mod",
            CatalogSource.CURSEFORGE,
            resolved_url="http://127.0.0.1:notaport/files/Spaced Mod-1.0.jar",
        ),
    ]
    installer.install(tmp_path / "mods", requests)

    assert report.names == ["Spaced Mod"]
    assert report.entries[0].reason is MissingReason.DOWNLOAD_FAILED
    assert not (tmp_path / "mods" / "Spaced_Mod.jar").exists()


def test_download_without_url_fails(tmp_path: Path) -> None:
    transport = FakeTransport()
    request = ModRequest("lost", "Lost Mod", CatalogSource.MODRINTH)
    with pytest.raises(DownloadFailed):
        _installer(transport, MissingModsReport()).download(request, tmp_path)
    assert transport.calls == []


def test_requests_are_resolved_only_once() -> None:
    calls = []

    class CountingResolver:
        def resolve(self, catalog_id, catalog, target_version):
            calls.append(catalog_id)
            return ResolutionOutcome.unresolved()

    installer = ModInstaller(CountingResolver(), FakeTransport(), MissingModsReport(), mc_version="1.21.1")
    requests = [ModRequest("a", "A", CatalogSource.MODRINTH)]
    installer.resolve_all(requests)
    installer.resolve_all(requests)
    assert calls == ["a"]


def test_concurrent_resolution_fills_each_request() -> None:
    pages = {modrinth_url(name): listing(version(["1.21.1"], f"https://cdn/{name}.jar")) for name in "abcdef"}
    installer = _installer(FakeTransport(pages=pages), MissingModsReport(), workers=4)
    requests = [ModRequest(name, name.upper(), CatalogSource.MODRINTH) for name in "abcdef"]
    installer.resolve_all(requests)
    assert [request.resolved_url for request in requests] == [f"https://cdn/{name}.jar" for name in "abcdef"]


def test_report_ignores_duplicate_names() -> None:
    report = MissingModsReport()
    request = ModRequest("x", "X", CatalogSource.MODRINTH)
    report.add(request, MissingReason.UNRESOLVED)
    report.add(request, MissingReason.DOWNLOAD_FAILED)
    assert len(report) == 1
    assert "X" in report


def test_mirror_copies_canonical_mods(tmp_path: Path) -> None:
    source = tmp_path / "one" / "mods"
    source.mkdir(parents=True)
    (source / "Fabric_API.jar").write_bytes(b"api")
    copied = mirror_mods(source, tmp_path / "two" / "mods")
    assert [path.name for path in copied] == ["Fabric_API.jar"]


def test_mirror_of_empty_directory_is_valid(tmp_path: Path) -> None:
    source = tmp_path / "one" / "mods"
    source.mkdir(parents=True)
    assert mirror_mods(source, tmp_path / "two" / "mods") == []


def test_mirror_without_canonical_directory_fails(tmp_path: Path) -> None:
    with pytest.raises(MirrorSourceMissing):
        mirror_mods(tmp_path / "missing", tmp_path / "two" / "mods")
