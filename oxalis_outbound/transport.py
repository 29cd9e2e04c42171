"""Hand documents to oxalis-standalone and collect the transport evidence."""
import secrets
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from oxalis_outbound.errors import LocalIOError, TransportRejectedError, TransportTimeoutError
from oxalis_outbound.logging_conf import logger
from oxalis_outbound.routing import RoutingIdentifiers


@dataclass(frozen=True)
class CommandResult:
    """Exit status and combined output of a finished process."""

    returncode: int
    output: str = ""


class SubprocessRunner:
    """Runs a command to completion, stdout and stderr captured together."""

    def run(self, args: List[str], timeout: Optional[float] = None, cwd: Optional[Path] = None) -> CommandResult:
        completed = subprocess.run(
            args,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
            # Own session, so a terminal Ctrl-C reaches only the daemon
            start_new_session=True,
        )
        return CommandResult(
            returncode=completed.returncode,
            output=completed.stdout.decode("utf-8", errors="replace"),
        )


class TransportInvoker:
    """Delivers one document per call through the external transport process."""

    def __init__(
        self,
        command: str,
        cert_path: str,
        scratch_dir: Path,
        protocol: str = "peppol-transport-as4-v2_0",
        timeout: Optional[float] = 300,
        runner=None,
    ):
        self.command = shlex.split(command)
        self.cert_path = cert_path
        self.scratch_dir = Path(scratch_dir)
        self.protocol = protocol
        self.timeout = timeout
        self.runner = runner or SubprocessRunner()

    def build_args(self, input_file: Path, routing: RoutingIdentifiers, evidence_dir: Path) -> List[str]:
        return self.command + [
            "-f", str(input_file),
            "-s", routing.sender,
            "-r", routing.receiver,
            "-e", str(evidence_dir),
            "-cert", self.cert_path,
            "--protocol", self.protocol,
        ]

    def send(self, document: bytes, routing: RoutingIdentifiers) -> bytes:
        """
        Send a document and return its evidence.

        Raises:
            LocalIOError: scratch resources could not be created or the
                process could not be started
            TransportTimeoutError: the process did not exit in time
            TransportRejectedError: non-zero exit, or no readable evidence
        """
        token = secrets.token_hex(16)
        evidence_dir = self.scratch_dir / f"evidence{token}"
        input_file = self.scratch_dir / f"ehf{token}.xml"

        try:
            evidence_dir.mkdir(parents=True)
        except OSError as e:
            logger.error(f"Failed to create temporary directory for evidence {evidence_dir}: {e}")
            raise LocalIOError(f"Cannot create evidence directory {evidence_dir}: {e}") from e
        logger.debug(f"Created temporary directory for evidence: {evidence_dir}")

        try:
            try:
                input_file.write_bytes(document)
            except OSError as e:
                logger.error(f"Failed to save XML to temporary file {input_file}: {e}")
                raise LocalIOError(f"Cannot write scratch file {input_file}: {e}") from e
            logger.debug(f"Saved XML to temporary file: {input_file}")

            return self._invoke(input_file, routing, evidence_dir)
        finally:
            self._cleanup(input_file, evidence_dir)

    def _invoke(self, input_file: Path, routing: RoutingIdentifiers, evidence_dir: Path) -> bytes:
        args = self.build_args(input_file, routing, evidence_dir)
        logger.info(f"Executing oxalis-standalone: {shlex.join(args)}")

        try:
            result = self.runner.run(args, timeout=self.timeout, cwd=self.scratch_dir)
        except subprocess.TimeoutExpired as e:
            logger.error(f"oxalis-standalone did not finish within {self.timeout}s")
            raise TransportTimeoutError(f"Transport timed out after {self.timeout}s") from e
        except OSError as e:
            logger.error(f"Failed to start oxalis-standalone: {e}")
            raise LocalIOError(f"Cannot start {self.command[0]}: {e}") from e

        if result.returncode != 0:
            logger.error(
                f"Failed to run oxalis-standalone, got return code {result.returncode}; output:\n{result.output}"
            )
            raise TransportRejectedError(
                f"oxalis-standalone exited with {result.returncode}",
                returncode=result.returncode,
                output=result.output,
            )

        try:
            evidence_files = sorted(p for p in evidence_dir.iterdir() if p.is_file())
        except OSError as e:
            logger.warning(f"Cannot list evidence directory {evidence_dir}: {e}")
            evidence_files = []
        contents = []
        for evidence_file in evidence_files:
            logger.debug(f"Getting receipt evidence from {evidence_file}")
            try:
                contents.append(evidence_file.read_bytes())
            except OSError as e:
                logger.warning(f"Unreadable evidence file {evidence_file}: {e}")

        if not contents:
            logger.error(
                f"oxalis-standalone did not create a readable evidence in {evidence_dir}; output:\n{result.output}"
            )
            raise TransportRejectedError(
                "oxalis-standalone produced no evidence",
                returncode=result.returncode,
                output=result.output,
            )

        return b"".join(contents)

    def _cleanup(self, input_file: Path, evidence_dir: Path) -> None:
        logger.debug(f"Deleting temporary file {input_file} and evidence directory {evidence_dir}")
        try:
            input_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete temporary file {input_file}: {e}")
        try:
            shutil.rmtree(evidence_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete temporary evidence directory {evidence_dir}: {e}")
