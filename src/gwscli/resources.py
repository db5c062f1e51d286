from dataclasses import asdict, fields
from typing import Self

class GoogleWorkSpaceResourceBase():
    """
    Intended to be subclassed by a dataclass but isnt actually a dataclass.
    Subclasses mirror a GWS resource representation field for field, using
    the API's camelCase names so raw response dicts can be splatted straight in.
    """

    @classmethod
    def from_response(cls, response: dict|None) -> Self:
        """
        Build from a raw API response dict.
        The APIs grow new fields over time so anything we don't model is dropped
        rather than blowing up the constructor.
        """
        if not response:
            return cls()
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in dict(response).items() if k in names})

    def to_base(self) -> dict:
        """
        Default just return the dict representation of the object as needed by
        the GWS client or for JSON output.  Something more complicated can override.
        Call fixup() first to ensure all fields are in correct format.
        """
        self.fixup()
        return asdict(self)

    def trim(self) -> dict|None:
        """
        Return a 'trimmed' dict of the resource, removing top level attributes
        that are None or empty.  Empty only applies to strings and containers,
        int/bool/float values are kept as 0 or False can be meaningful.
        """
        b = self.to_base()
        if b:
            for k, v in list(b.items()):
                if v is None or (type(v) not in [int, bool, float] and not v):
                    del b[k]
        return b

    def fixup(self) -> None:
        """
        notify a subclass to do any field adjustments
        """
        pass
