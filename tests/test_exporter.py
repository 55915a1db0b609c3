"""Tests for exporter.py module.

End-to-end pipeline runs against an in-memory depot and a mocked engine.
Workspace removal is observed through container_exporter.builds.workspace.
"""

import base64
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from container_exporter.builds import workspace
from container_exporter.builds.engine import Engine
from container_exporter.builds.naming import NamingPolicy
from container_exporter.builds.spec import BuildSpec
from container_exporter.config import Settings
from container_exporter.errors import (
    BuildRootError,
    CredentialError,
    DepotError,
    EngineBuildError,
    EngineError,
    PushError,
    ResolutionError,
)
from container_exporter.exporter import (
    ExportOrchestrator,
    ExportRequest,
    ExportResult,
    PublishRequest,
)
from container_exporter.registry.credentials import resolve_credential
from container_exporter.types import ExportStage, RegistryType

WEB = "acme/web/1.2.0/20200101000000"
SCENARIO_POLICY = NamingPolicy(
    latest_tag=True, version_tag=True, version_release_tag=False
)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create settings pointing below tmp_path."""
    return Settings(
        cache_dir=tmp_path / "cache",
        results_dir=tmp_path / "results",
        tmp_dir=tmp_path / "work",
        exporter_version="2.0.0",
    )


@pytest.fixture
def engine() -> MagicMock:
    """Create a mocked engine."""
    mock = MagicMock(spec=Engine)
    mock.build.return_value = "sha256:abc123"
    return mock


@pytest.fixture
def resolver() -> MagicMock:
    """Wrap the real credential resolver to count calls."""
    return MagicMock(wraps=resolve_credential)


@pytest.fixture
def reporter() -> MagicMock:
    """Create a recording reporter."""
    return MagicMock()


@pytest.fixture
def orchestrator(settings, fake_depot, reporter, resolver) -> ExportOrchestrator:
    """Create an orchestrator wired to fakes."""
    return ExportOrchestrator(
        settings=settings,
        depot=fake_depot,
        reporter=reporter,
        credential_resolver=resolver,
    )


@pytest.fixture
def remove_spy():
    """Count workspace removals while still removing."""
    with patch(
        "container_exporter.builds.workspace.remove", wraps=workspace.remove
    ) as spy:
        yield spy


def _workspaces(settings: Settings) -> list[Path]:
    if not settings.tmp_dir.exists():
        return []
    return list(settings.tmp_dir.iterdir())


class TestScenarios:
    """End-to-end scenarios."""

    def test_build_without_push(
        self, orchestrator, engine, resolver, remove_spy, settings
    ) -> None:
        """Image is tagged latest and version; nothing is published."""
        result = orchestrator.export(
            BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine
        )

        assert isinstance(result, ExportResult)
        assert result.stage is ExportStage.DONE
        assert set(result.image.refs) == {"acme/web:latest", "acme/web:1.2.0"}
        assert len(result.image.refs) == 2
        assert remove_spy.call_count == 1
        assert _workspaces(settings) == []
        resolver.assert_not_called()
        engine.push.assert_not_called()
        assert result.report_path == settings.results_dir / "last_container_export.env"

    def test_build_and_push_generic(
        self, orchestrator, engine, resolver, remove_spy, settings
    ) -> None:
        """Basic credentials are built before the first upload."""
        uploads: list[tuple[str, str]] = []

        def push(ref: str, auth_file: Path) -> None:
            assert resolver.call_count == 1
            assert _workspaces(settings) == []
            auths = json.loads(auth_file.read_text())["auths"]
            uploads.append((ref, next(iter(auths.values()))["auth"]))

        engine.push.side_effect = push
        policy = SCENARIO_POLICY.model_copy(
            update={"registry_type": RegistryType.DOCKER}
        )

        result = orchestrator.export(
            BuildSpec(references=(WEB,)),
            policy,
            engine,
            publish=PublishRequest("username", "password"),
        )

        token = base64.b64encode(b"username:password").decode()
        assert uploads == [
            ("acme/web:1.2.0", token),
            ("acme/web:latest", token),
        ]
        assert result.pushed == ["acme/web:1.2.0", "acme/web:latest"]
        assert remove_spy.call_count == 1

    def test_unresolvable_reference(
        self, orchestrator, engine, reporter, remove_spy, settings
    ) -> None:
        """Resolution failure stops before any workspace exists."""
        with patch("container_exporter.builds.workspace.create") as create:
            with pytest.raises(ResolutionError) as exc_info:
                orchestrator.export(
                    BuildSpec(references=("doesnotexist/pkg",)), SCENARIO_POLICY, engine
                )

        assert exc_info.value.reference == "doesnotexist/pkg"
        assert exc_info.value.stage is ExportStage.RESOLVING
        assert exc_info.value.image is None
        create.assert_not_called()
        assert remove_spy.call_count == 0
        engine.build.assert_not_called()
        reporter.fatal.assert_called_once()

    def test_engine_build_failure(
        self, orchestrator, engine, reporter, remove_spy, settings
    ) -> None:
        """Build failures still destroy the workspace."""
        engine.build.side_effect = EngineBuildError("failed", 1, "tool output")

        with pytest.raises(EngineBuildError) as exc_info:
            orchestrator.export(BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine)

        assert exc_info.value.stage is ExportStage.BUILDING
        assert exc_info.value.output == "tool output"
        assert remove_spy.call_count == 1
        assert _workspaces(settings) == []
        assert "tool output" in reporter.fatal.call_args.args[0]


class TestCleanup:
    """Workspace destruction on every exit path."""

    def test_assembly_failure(
        self, orchestrator, fake_depot, engine, remove_spy, settings, monkeypatch
    ) -> None:
        """Assembly failures remove the partial workspace once."""

        def fail(*args, **kwargs):
            raise DepotError("reset", code="network_error")

        monkeypatch.setattr(fake_depot, "download", fail)

        with pytest.raises(BuildRootError) as exc_info:
            orchestrator.export(BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine)

        assert exc_info.value.stage is ExportStage.ASSEMBLING
        assert remove_spy.call_count == 1
        assert _workspaces(settings) == []

    def test_undecodable_metadata(
        self, orchestrator, fake_depot, engine, reporter, remove_spy, settings
    ) -> None:
        """Unreadable package metadata is a reported assembly failure."""
        fake_depot.packages[WEB] = {
            "files": {"RUNTIME_ENVIRONMENT": b"GREETING=caf\xe9\n"}
        }

        with pytest.raises(BuildRootError) as exc_info:
            orchestrator.export(BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine)

        assert exc_info.value.code == "install_failed"
        assert exc_info.value.stage is ExportStage.ASSEMBLING
        reporter.fatal.assert_called_once()
        assert remove_spy.call_count == 1
        assert _workspaces(settings) == []
        engine.build.assert_not_called()

    def test_publish_failure(self, orchestrator, engine, remove_spy) -> None:
        """A failed push happens after cleanup and is not rolled back."""
        engine.push.side_effect = [None, EngineError("denied", code="command_failed")]

        with pytest.raises(PushError) as exc_info:
            orchestrator.export(
                BuildSpec(references=(WEB,)),
                SCENARIO_POLICY,
                engine,
                publish=PublishRequest("u", "p"),
                remove=True,
            )

        error = exc_info.value
        assert error.stage is ExportStage.PUBLISHING
        assert error.pushed == ["acme/web:1.2.0"]
        assert error.image is not None
        assert remove_spy.call_count == 1
        engine.remove.assert_not_called()

    def test_interrupt_during_build(
        self, orchestrator, engine, remove_spy, settings
    ) -> None:
        """Cancellation still destroys the workspace."""
        engine.build.side_effect = KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            orchestrator.export(BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine)

        assert remove_spy.call_count == 1
        assert _workspaces(settings) == []

    def test_cleanup_error_is_not_fatal(
        self, orchestrator, engine, reporter
    ) -> None:
        """A failed destroy is reported as a warning."""
        with patch(
            "container_exporter.builds.workspace.remove",
            side_effect=PermissionError("denied"),
        ):
            result = orchestrator.export(
                BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine
            )

        assert result.stage is ExportStage.DONE
        assert result.cleanup_error is not None
        reporter.warn.assert_called()
        reporter.fatal.assert_not_called()


class TestPublishing:
    """Credential handling and optional stages."""

    def test_credential_error_keeps_build(
        self, orchestrator, engine, settings
    ) -> None:
        """Invalid publish input fails only the publish stage."""
        with pytest.raises(CredentialError) as exc_info:
            orchestrator.export(
                BuildSpec(references=(WEB,)),
                SCENARIO_POLICY,
                engine,
                publish=PublishRequest("", ""),
            )

        assert exc_info.value.stage is ExportStage.PUBLISHING
        assert exc_info.value.image.image_id == "sha256:abc123"
        assert (settings.results_dir / "last_container_export.env").exists()
        engine.push.assert_not_called()

    def test_amazon_single_token_exchange(self, orchestrator, engine) -> None:
        """Amazon registries exchange the keys exactly once per export."""
        client = MagicMock()
        client.get_authorization_token.return_value = {
            "authorizationData": [{"authorizationToken": "QVdTOnRva2Vu"}]
        }
        policy = NamingPolicy(
            registry_type=RegistryType.AMAZON,
            registry_url="https://1.dkr.ecr.us-west-2.amazonaws.com",
        )

        with patch(
            "container_exporter.registry.credentials._default_ecr_client",
            return_value=client,
        ) as factory:
            result = orchestrator.export(
                BuildSpec(references=(WEB,)),
                policy,
                engine,
                publish=PublishRequest("AKID", "secret"),
            )

        assert client.get_authorization_token.call_count == 1
        factory.assert_called_once_with("us-west-2", "AKID", "secret")
        assert all(
            ref.startswith("1.dkr.ecr.us-west-2.amazonaws.com/acme/web:")
            for ref in result.pushed
        )
        assert len(result.pushed) == 3

    def test_push_then_remove(self, orchestrator, engine) -> None:
        """Removal deletes registry refs and local tags."""
        policy = SCENARIO_POLICY.model_copy(
            update={"registry_url": "reg.example.com"}
        )

        result = orchestrator.export(
            BuildSpec(references=(WEB,)),
            policy,
            engine,
            publish=PublishRequest("u", "p"),
            remove=True,
        )

        assert result.removed == [
            "reg.example.com/acme/web:1.2.0",
            "reg.example.com/acme/web:latest",
            "acme/web:1.2.0",
            "acme/web:latest",
        ]

    def test_save_tarball(self, orchestrator, engine, settings) -> None:
        """The image can be exported next to the report."""
        result = orchestrator.export(
            BuildSpec(references=(WEB,)),
            SCENARIO_POLICY,
            engine,
            save_tarball=True,
        )

        assert result.tarball == settings.results_dir / "acme-web-1.2.0.tar"
        engine.export_tarball.assert_called_once()

    def test_engine_kind_string(self, orchestrator) -> None:
        """Engines can be selected by name."""
        with patch("container_exporter.exporter.get_engine") as get_engine:
            get_engine.return_value.build.return_value = "sha256:1"
            orchestrator.export(BuildSpec(references=(WEB,)), SCENARIO_POLICY, "podman")

        get_engine.assert_called_once_with("podman")

    def test_engine_defaults_to_settings(self, orchestrator) -> None:
        """Without an engine the configured default is used."""
        with patch("container_exporter.exporter.get_engine") as get_engine:
            get_engine.return_value.build.return_value = "sha256:1"
            orchestrator.export(BuildSpec(references=(WEB,)), SCENARIO_POLICY)

        get_engine.assert_called_once_with(orchestrator.settings.engine)

    def test_push_to_registry_url(self, orchestrator, engine) -> None:
        """References are qualified with the policy's registry host."""
        policy = SCENARIO_POLICY.model_copy(
            update={"registry_url": "https://reg.example.com/"}
        )

        result = orchestrator.export(
            BuildSpec(references=(WEB,)),
            policy,
            engine,
            publish=PublishRequest("u", "p"),
        )

        assert result.pushed == [
            "reg.example.com/acme/web:1.2.0",
            "reg.example.com/acme/web:latest",
        ]
        engine.tag.assert_any_call("acme/web:1.2.0", "reg.example.com/acme/web:1.2.0")


class TestExportMany:
    """Tests for ExportOrchestrator.export_many."""

    def test_results_in_request_order(self, orchestrator, engine, settings) -> None:
        """Each request gets its own outcome, failures included."""
        requests = [
            ExportRequest(BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine),
            ExportRequest(
                BuildSpec(references=("doesnotexist/pkg",)), SCENARIO_POLICY, engine
            ),
            ExportRequest(
                BuildSpec(references=("core/redis",)), SCENARIO_POLICY, engine
            ),
        ]

        outcomes = orchestrator.export_many(requests, max_workers=2)

        assert isinstance(outcomes[0], ExportResult)
        assert isinstance(outcomes[1], ResolutionError)
        assert isinstance(outcomes[2], ExportResult)
        assert outcomes[2].image.name == "core/redis"
        assert _workspaces(settings) == []

    def test_bad_package_keeps_other_outcomes(
        self, orchestrator, fake_depot, engine, settings
    ) -> None:
        """One unreadable package fails only its own request."""
        fake_depot.packages[WEB] = {
            "files": {"RUNTIME_ENVIRONMENT": b"GREETING=caf\xe9\n"}
        }
        requests = [
            ExportRequest(
                BuildSpec(references=("core/redis",)), SCENARIO_POLICY, engine
            ),
            ExportRequest(BuildSpec(references=(WEB,)), SCENARIO_POLICY, engine),
        ]

        outcomes = orchestrator.export_many(requests, max_workers=2)

        assert isinstance(outcomes[0], ExportResult)
        assert isinstance(outcomes[1], BuildRootError)
        assert outcomes[1].code == "install_failed"
        assert _workspaces(settings) == []
