"""Container image build and push through the docker CLI."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

from ..errors import BuildError
from ..logging import get_logger
from ..models import RegistryCredentials

logger = get_logger("build.image")

# Multi-stage build: compile a static binary, then ship it on a minimal base.
DOCKERFILE = """\
FROM golang:1.22 AS builder
WORKDIR /workspace
COPY . .
ARG APP_DIR
ARG APP_VERSION
ENV CGO_ENABLED=0 GOWORK=off
RUN go build -ldflags "-X main.version=${APP_VERSION}" -o /workspace/app ./${APP_DIR}

FROM alpine:3.19
COPY --from=builder /workspace/app /bin/app
ENTRYPOINT ["/bin/app"]
"""


class ImageBuilder(Protocol):
    def build_and_push(
        self,
        repo_dir: Path,
        app_relative_dir: str,
        registry_repository: str,
        version: str,
        credentials: RegistryCredentials,
    ) -> str: ...


class DockerImageBuilder:
    """Builds one application image from the repository root and pushes it."""

    def __init__(
        self,
        runner: Callable[..., str] | None = None,
        *,
        executable: str = "docker",
        dockerfile: str = DOCKERFILE,
    ) -> None:
        self._runner = runner or self._default_runner
        self.executable = executable
        self.dockerfile = dockerfile

    def build_and_push(
        self,
        repo_dir: Path,
        app_relative_dir: str,
        registry_repository: str,
        version: str,
        credentials: RegistryCredentials,
    ) -> str:
        """Return the pushed image reference."""
        image = image_reference(credentials, registry_repository, version)
        repo_dir = Path(repo_dir)
        app_path = repo_dir / app_relative_dir

        logger.info("Building %s from %s", image, app_relative_dir)
        self._run(
            [
                self.executable,
                "build",
                "--file",
                "-",
                "--build-arg",
                f"APP_DIR={app_relative_dir}",
                "--build-arg",
                f"APP_VERSION={version}",
                "--tag",
                image,
                ".",
            ],
            cwd=repo_dir,
            input=self.dockerfile,
            application=app_path,
        )
        self._run(
            [
                self.executable,
                "login",
                credentials.registry,
                "--username",
                credentials.username,
                "--password-stdin",
            ],
            cwd=repo_dir,
            input=credentials.password,
            application=app_path,
        )
        self._run([self.executable, "push", image], cwd=repo_dir, application=app_path)
        logger.info("Pushed %s", image)
        return image

    def _run(
        self,
        args: list[str],
        *,
        cwd: Path,
        application: Path,
        input: Optional[str] = None,
    ) -> str:
        try:
            return self._runner(args, cwd=cwd, input=input)
        except FileNotFoundError as exc:
            raise BuildError(application, f"unable to locate '{self.executable}'") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip() or f"exit status {exc.returncode}"
            raise BuildError(application, f"{args[1]} failed: {detail}") from exc

    @staticmethod
    def _default_runner(args: Iterable[str], *, cwd: Path, input: Optional[str] = None) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            input=input,
            check=True,
            text=True,
            capture_output=True,
        )
        return completed.stdout


def image_reference(credentials: RegistryCredentials, repository: str, version: str) -> str:
    return f"{credentials.username}/{repository}:{version}"


__all__ = ["DOCKERFILE", "DockerImageBuilder", "ImageBuilder", "image_reference"]
