"""The model call, kept behind a command boundary.

The configured command receives the rendered prompt on stdin and prints the
model's response on stdout. MODEL_ID and MAX_TOKENS are exported to it.
"""

from __future__ import annotations

import os
import subprocess

from .config import CheckerConfig


class AnalyzerError(RuntimeError):
    """The analyzer command failed, timed out, or printed nothing."""


def analyzer_env(config: CheckerConfig, base: dict[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    if config.model.id:
        env["MODEL_ID"] = config.model.id
    env["MAX_TOKENS"] = str(config.model.max_tokens)
    return env


def run_analyzer(prompt: str, config: CheckerConfig) -> str:
    command = list(config.analyzer.command)
    if not command:
        raise AnalyzerError("no analyzer command configured (set analyzer.command or ANALYZER_COMMAND)")
    try:
        proc = subprocess.run(
            command,
            input=prompt,
            capture_output=True,
            text=True,
            timeout=config.analyzer.timeout_seconds,
            env=analyzer_env(config),
        )
    except subprocess.TimeoutExpired:
        raise AnalyzerError(f"analyzer timed out after {config.analyzer.timeout_seconds}s") from None
    except OSError as exc:
        raise AnalyzerError(f"unable to start analyzer {command[0]!r}: {exc}") from exc

    if proc.returncode != 0:
        detail = (proc.stderr or "").strip()[-2000:]
        raise AnalyzerError(f"analyzer exited with {proc.returncode}: {detail}")
    if not proc.stdout.strip():
        raise AnalyzerError("analyzer produced no output")
    return proc.stdout
