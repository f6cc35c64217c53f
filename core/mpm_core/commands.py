"""
commands.py — Map a verb and argument list onto PackageManager operations.

The boundary (HTTP or CLI) hands over an already-authenticated command name
and its arguments; this module validates usage and returns the plain-text
result, letting MpmError propagate.
"""

from .errors import InvalidArgumentError

ADD_ALIASES = ("add", "install")
DEL_ALIASES = ("del", "delete", "remove")
INFO_ALIASES = ("info", "show")


def execute(manager, command, args=()):
    """Run one command against a PackageManager.

    `pkg <action> ...` is accepted as well as the bare action.

    Raises:
        InvalidArgumentError: On missing arguments or an unknown command.
        MpmError: Whatever the underlying operation raises.
    """
    args = list(args)
    if command == "pkg":
        command = args.pop(0) if args else "list"
    first = args[0] if args else None

    if command in ADD_ALIASES:
        if not args:
            raise InvalidArgumentError("Usage: pkg add PACKAGE1 [PACKAGE2 ...]")
        return manager.install(args)

    if command in DEL_ALIASES:
        if not first:
            raise InvalidArgumentError("Usage: pkg del PACKAGE")
        return manager.remove(first)

    if command == "upgrade":
        return manager.upgrade(first)

    if command == "update":
        return manager.refresh()

    if command == "list":
        return manager.list_installed(first)

    if command == "search":
        if not first:
            raise InvalidArgumentError("Usage: pkg search KEYWORD")
        return manager.search(first)

    if command in INFO_ALIASES:
        if not first:
            raise InvalidArgumentError("Usage: pkg info PACKAGE")
        return manager.info(first)

    if command == "unlock":
        return manager.unlock()

    if command == "help":
        return manager.help()

    if command == "version":
        return manager.version()

    raise InvalidArgumentError(
        f"Unknown action: {command}\nRun 'pkg help' for available actions")
