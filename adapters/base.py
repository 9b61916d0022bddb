from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from offers import Offer


@dataclass
class RowDetail:
    label: str
    value: str
    is_booked: bool


@dataclass
class VacancyObservation:
    offer: Offer
    has_vacancy: bool
    details: list[RowDetail] = field(default_factory=list)


class BaseAdapter(ABC):
    """
    One adapter per source kind. A configured target (a page, a campground search)
    expands into the offers it covers; check() only ever sees the offers still worth checking.
    """

    kind = "base"

    @abstractmethod
    def expand(self, target) -> list[Offer]:
        """Returns every offer the target covers, in configuration order."""
        raise NotImplementedError

    @abstractmethod
    def check(self, target, offers: list[Offer]) -> list[VacancyObservation]:
        """
        Returns one observation per offer in `offers`.

        Args:
            target: the configured target the offers were expanded from
            offers: a non-empty subset of expand(target)
        """
        raise NotImplementedError
