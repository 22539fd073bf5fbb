"""
Slave declaration parsing.

A declaration is a comma separated list of ``host[:slots[:port]]``
entries, e.g. ``build1:4,build2,[fd00::7]:2:9000``. Empty slot or port
fields fall back to the configured defaults. The whole declaration is
validated before anything is returned, so a malformed entry never
leaves partially declared workers behind.
"""

import pathlib
import re

from compilefarm.env import Env
from compilefarm.errors import DeclarationError
from compilefarm.models import SlaveDeclaration

_ENTRY_PATTERN = re.compile(
    r"^(?:\[(?P<ipv6>[0-9A-Fa-f:.]+)\]|(?P<host>[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?))"
    r"(?::(?P<slots>[^:]*)(?::(?P<port>[^:]*))?)?$"
)

MAX_PORT = 65535


def parse_slaves(
    declaration: str,
    default_slots: int = 1,
    default_port: int = 8484,
) -> list[SlaveDeclaration]:
    if declaration is None or declaration.strip() == "":
        raise DeclarationError(declaration or "", "no slaves declared")

    slaves: list[SlaveDeclaration] = []
    seen: set[str] = set()

    for raw_entry in declaration.split(","):
        entry = raw_entry.strip()
        if entry == "":
            raise DeclarationError(declaration, "empty slave entry")

        slave = parse_slave(
            entry,
            default_slots=default_slots,
            default_port=default_port,
        )

        key = slave.host.lower()
        if key in seen:
            raise DeclarationError(declaration, f"slave {slave.host} declared twice")

        seen.add(key)
        slaves.append(slave)

    return slaves


def parse_slave(
    entry: str,
    default_slots: int = 1,
    default_port: int = 8484,
) -> SlaveDeclaration:
    match = _ENTRY_PATTERN.match(entry)
    if match is None:
        raise DeclarationError(entry, "expected host[:slots[:port]]")

    host = match.group("ipv6") or match.group("host")

    slots = _parse_number(entry, "slots", match.group("slots"), default_slots)
    if slots < 1:
        raise DeclarationError(entry, "slot count must be positive")

    port = _parse_number(entry, "port", match.group("port"), default_port)
    if port < 1 or port > MAX_PORT:
        raise DeclarationError(entry, f"port must be between 1 and {MAX_PORT}")

    return SlaveDeclaration(
        host,
        slots,
        port,
        source=entry,
    )


def read_slaves_file(path: str | pathlib.Path) -> str:
    """
    Read a slaves file, one entry per line. Blank lines and ``#``
    comments are ignored.
    """
    slaves_path = pathlib.Path(path)

    try:
        lines = slaves_path.read_text(encoding="utf-8").splitlines()

    except OSError as err:
        raise DeclarationError(str(path), f"cannot read slaves file: {err}") from err

    entries = [
        line.split("#", 1)[0].strip()
        for line in lines
    ]

    return ",".join(entry for entry in entries if entry)


def resolve_declaration(
    env: Env,
    declaration: str | None = None,
    project_slaves: list[str] | None = None,
) -> str | None:
    """
    Pick the declaration for a session: explicit option first, then the
    project attribute, then ``COMPILEFARM_SLAVES``, then the file named
    by ``COMPILEFARM_SLAVES_FILE``.
    """
    if declaration:
        return declaration

    if project_slaves:
        return ",".join(project_slaves)

    if env.COMPILEFARM_SLAVES:
        return env.COMPILEFARM_SLAVES

    if env.COMPILEFARM_SLAVES_FILE:
        return read_slaves_file(env.COMPILEFARM_SLAVES_FILE)

    return None


def _parse_number(
    entry: str,
    field: str,
    value: str | None,
    default: int,
) -> int:
    if value is None or value == "":
        return default

    if not (value.isascii() and value.isdigit()):
        raise DeclarationError(entry, f"{field} must be a number, got {value!r}")

    return int(value)
