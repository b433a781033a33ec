"""Stand-in for the ``ollama`` CLI used by the tests.

Usage: fake_ollama.py pull|rm <model>

Model names pick the behaviour:
  broken   pull fails with exit code 1
  slow     pull prints one line then hangs
  missing  rm fails with exit code 1
"""

import sys
import time


def emit(text: str, stream=sys.stdout) -> None:
    stream.write(text)
    stream.flush()


def pull(model: str) -> int:
    emit("pulling manifest\n")
    if model == "slow":
        emit("pulling 6a0746a1ec1a...  12% \n")
        time.sleep(60)
        return 0
    emit("\x1b[?2026h\x1b[?25l\x1b[A\x1b[1Gpulling 6a0746a1ec1a... 412.3 MB / 4.1 GB\n")
    emit("pulling 4fa551d4f938...  47%\r")
    emit("warning: mirror is slow\n", sys.stderr)
    emit("verifying sha256 digest\n")
    if model == "broken":
        emit("Error: pull model manifest: file does not exist\n", sys.stderr)
        return 1
    emit("writing manifest\nsuccess\n")
    return 0


def rm(model: str) -> int:
    if model == "missing":
        emit(f"Error: model '{model}' not found\n", sys.stderr)
        return 1
    emit(f"deleted '{model}'\n")
    return 0


def main(argv: list[str]) -> int:
    command, model = argv[1], argv[2]
    if command == "pull":
        return pull(model)
    if command == "rm":
        return rm(model)
    emit(f"unknown command {command}\n", sys.stderr)
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv))
