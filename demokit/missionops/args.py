"""Parsing of ``--flag value`` style slash command arguments."""

from __future__ import annotations


def parse_args(command):
    """Map each ``--flag`` to the words after it.

    The command is split on single spaces and its first word dropped. A first
    remaining word that is not a flag is stored under ``action``. Flags with no
    words after them are left out.
    """
    args = {}
    parts = command.split(" ")
    if len(parts) <= 1:
        return args

    current_key = ""
    value = []
    for position, part in enumerate(parts[1:]):
        if part.startswith("--"):
            if current_key and value:
                args[current_key] = " ".join(value)
            current_key = part[2:]
            value = []
        elif current_key:
            value.append(part)
        elif position == 0:
            args["action"] = part

    if current_key and value:
        args[current_key] = " ".join(value)
    return args