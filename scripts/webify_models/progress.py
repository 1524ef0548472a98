"""Progress bar wrapper for the texture and mesh passes."""

from __future__ import annotations

from tqdm import tqdm

BAR_FORMAT = "{desc:15} {postfix}\n[{elapsed}] {bar:60} {n_fmt:>7}/{total_fmt:7}"


class ProgressReporter:
    """Prefix, message, increment and finish events over a tqdm bar. Purely observational."""

    def __init__(self, total: int, prefix: str = "", disable: bool = False) -> None:
        self.bar = tqdm(
            total=total,
            desc=prefix,
            bar_format=BAR_FORMAT,
            ascii=" ░▒▓█",
            disable=disable,
            leave=True,
        )
        self.count = 0

    @property
    def total(self) -> int:
        return self.bar.total

    def set_prefix(self, prefix: str) -> None:
        self.bar.set_description_str(prefix, refresh=False)

    def set_message(self, message: str) -> None:
        self.bar.set_postfix_str(message, refresh=True)

    def inc(self, count: int = 1) -> None:
        self.count += count
        self.bar.update(count)

    def finish(self, message: str = "") -> None:
        if message:
            self.bar.set_postfix_str(message, refresh=False)
        self.bar.close()

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.bar.close()
