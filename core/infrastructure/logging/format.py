from typing import Any, Dict

LEVEL_COLORS = {
    "CRITICAL": "<red>",
    "DEBUG": "<white>",
    "ERROR": "<magenta>",
    "INFO": "<blue>",
    "SUCCESS": "<green>",
    "TRACE": "<dim>",
    "WARNING": "<yellow>",
}


class CustomLogFormat:
    """Manage custom log formatting for console and file outputs.

    Takes a Loguru record dictionary and formats it into human-readable
    strings, prefixing messages emitted inside a stream connection with the
    user and connection generation they belong to.
    """

    def __init__(self, record: Dict[str, Any]) -> None:
        self.record = record
        self.time_str = self.record["time"].strftime("%Y-%m-%d %H:%M:%S.%f")[:-4]
        self.level = self.record["level"].name
        self.level_color = LEVEL_COLORS.get(self.level, "<white>")
        self.function = self.record["function"]
        if self.function == "<module>":
            self.function = "\\<module\\>"

        self.location = f"{self.record['file']}:{self.function}:{self.record['line']}"

    def _connection_tag(self) -> str:
        extra = self.record["extra"]
        user_id = extra.get("user_id")
        if user_id is None:
            return ""

        generation = extra.get("generation")
        suffix = f"#{generation}" if generation is not None else ""
        return f"<magenta>[{user_id}{suffix}]</magenta> "

    def _message(self) -> str:
        closing = self.level_color.strip("<>")
        return f"<level>{self.level_color}{self.record['message']}</{closing}></level>"

    def log_console_format(self) -> str:
        """Format the log record for console output.

        Returns
        -------
        str
            Timestamp, colored level, location, connection tag and message.
        """
        closing = self.level_color.strip("<>")
        return (
            f"<dim><bold>{self.time_str}</bold></dim> | "
            f"<level>{self.level_color}{self.level:8}</{closing}></level> | "
            f"<cyan>{self.location}</cyan> - "
            f"{self._connection_tag()}{self._message()}"
            "\n"
        )

    def log_file_format(self) -> str:
        """Format the log record for file output.

        Appends every extra context value except the connection tag fields,
        which are already rendered inline.

        Returns
        -------
        str
            Formatted string suitable for file logging.
        """
        context_parts = [
            f"{key}={value}"
            for key, value in self.record["extra"].items()
            if key not in ["user_id", "generation"]
        ]
        context_string = f" | {', '.join(context_parts)}" if context_parts else ""
        closing = self.level_color.strip("<>")

        return (
            f"<dim><bold>{self.time_str}</bold></dim> | "
            f"<level>{self.level_color}{self.level:8}</{closing}></level> | "
            f"<cyan>{self.location}</cyan> - "
            f"{self._connection_tag()}{self._message()}"
            f"<bold><dim>{context_string}</dim></bold>"
            "\n"
        )
