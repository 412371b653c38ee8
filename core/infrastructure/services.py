import re
from typing import Any, Dict, List, Pattern
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

MASK = "***MASKED***"


class DataSanitizer:
    """Data sanitizer for removing/masking sensitive information from logs.

    Stream frames and REST payloads are logged when they are dropped or when a
    backend call fails; they can carry e-mail addresses, session tokens in
    deep links, or profile fields. Everything that reaches a log sink goes
    through `sanitize_for_logging` first.
    """

    def __init__(self, max_length: int = 500):
        self.max_length = max_length
        self.sensitive_patterns: List[Pattern[str]] = [
            re.compile(pattern, re.IGNORECASE)
            for pattern in (
                r"password",
                r"secret",
                r"token",
                r"api_?key",
                r"auth",
                r"credential",
                r"session",
                r"cookie",
                r"csrf",
                r"email",
            )
        ]
        self.email_pattern = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
        self.url_pattern = re.compile(r"https?://[^\s\"']+|/[^\s\"']*\?[^\s\"']+")

    def sanitize_for_logging(self, data: Any) -> Any:
        """Sanitize data for logging purposes.

        Recursively processes strings, dicts and lists, masking sensitive
        fields, e-mail addresses and sensitive query parameters.

        Parameters
        ----------
        data: Any
            Data to be sanitized.

        Returns
        -------
        Any
            Sanitized copy of the data.
        """
        return self._sanitize_value(data)

    def sanitize_exception_for_logging(self, exception: BaseException) -> str:
        """Render an exception as a sanitized `Type: message` string."""
        try:
            return f"{type(exception).__name__}: {self._sanitize_string(str(exception))}"
        except Exception:
            return f"***SANITIZED*** {type(exception).__name__}"

    def _is_sensitive_field(self, field_name: str) -> bool:
        return any(pattern.search(field_name) for pattern in self.sensitive_patterns)

    def _mask_email(self, email: str) -> str:
        local, domain = email.split("@", 1)
        if len(local) <= 2:
            masked_local = "*" * len(local)
        else:
            masked_local = local[0] + "*" * (len(local) - 2) + local[-1]
        return f"{masked_local}@{domain}"

    def _sanitize_url(self, url: str) -> str:
        try:
            parsed = urlparse(url)
            if not parsed.query:
                return url

            params = [
                (key, MASK if self._is_sensitive_field(key) else value)
                for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            ]
            return urlunparse(parsed._replace(query=urlencode(params, safe="*")))
        except ValueError:
            return "***SANITIZED_URL***"

    def _sanitize_string(self, text: str) -> str:
        if len(text) > self.max_length:
            text = text[: self.max_length] + "..."

        text = self.email_pattern.sub(lambda m: self._mask_email(m.group()), text)
        return self.url_pattern.sub(lambda m: self._sanitize_url(m.group()), text)

    def _sanitize_dict(self, data: Dict[str, Any], max_depth: int) -> Dict[str, Any]:
        if max_depth <= 0:
            return {"<max_depth_reached>": "..."}

        return {
            key: MASK
            if self._is_sensitive_field(str(key))
            else self._sanitize_value(value, max_depth - 1)
            for key, value in data.items()
        }

    def _sanitize_value(self, value: Any, max_depth: int = 5) -> Any:
        if value is None or isinstance(value, (bool, int, float)):
            return value

        if isinstance(value, dict):
            return self._sanitize_dict(value, max_depth)

        if isinstance(value, (list, tuple, set)):
            if max_depth <= 0:
                return ["<max_depth_reached>"]
            # Only the head of long collections is useful in a log line.
            return [self._sanitize_value(item, max_depth - 1) for item in list(value)[:10]]

        return self._sanitize_string(str(value))
