"""
Field accessors over resolved AQI readings.

make_accessor() builds a function place -> value from a field path and
an optional output transform. Every accessor resolves through the
retrieval pipeline first, so it honours the cache policy exactly like
the reports do.

Accessors never fall back to a default: a Fault, a failed fetch, or a
missing field all raise MissingFieldError.
"""

from typing import Any, Callable, Optional

from cache_store import ApplicationFault, FieldPath, MissingFieldError, normalize_path
from retrieval import RetrievalPipeline, get_pipeline, normalize_place

Accessor = Callable[..., Any]


def make_accessor(
    field_path: FieldPath,
    transform: Optional[Callable[[Any], Any]] = None,
    name: Optional[str] = None,
) -> Accessor:
    """Build an accessor for one field of a Reading.

    Args:
        field_path: dotted string ("city.geo") or tuple of keys/indices.
        transform: applied to the raw value; may raise MissingFieldError
            when the value is present but unusable.
        name: function name, for repr and logging.
    """
    path = normalize_path(field_path)

    def accessor(place: Optional[str] = None, pipeline: Optional[RetrievalPipeline] = None) -> Any:
        place = normalize_place(place)
        entry = (pipeline or get_pipeline()).resolve(place)
        if entry is None:
            raise MissingFieldError(place, path, "no data retrieved")
        if entry.kind == "fault":
            try:
                entry.raise_for_fault()
            except ApplicationFault as e:
                raise MissingFieldError(place, path, entry.description) from e
        value = entry.lookup(path)
        if transform is None:
            return value
        try:
            return transform(value)
        except MissingFieldError:
            raise
        except (TypeError, ValueError, IndexError, AttributeError) as e:
            raise MissingFieldError(place, path, str(e)) from e

    accessor.__name__ = name or "accessor_" + "_".join(str(p) for p in path)
    accessor.field_path = path
    return accessor


# =============================================================================
# Transforms
# =============================================================================

def as_number(value: Any) -> float:
    """WAQI sends "-" for an index it has no value for."""
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def as_latlon(value: Any) -> str:
    lat, lon = value[0], value[1]
    return f"{lat}, {lon}"


def as_timestamp(value: Any) -> str:
    """Render the feed's time object as "<local time> <utc offset>"."""
    stamp = value.get("s")
    if not stamp:
        raise ValueError("observation time missing")
    tz = value.get("tz")
    return f"{stamp} {tz}" if tz else str(stamp)


# =============================================================================
# Accessor instances
# =============================================================================

city_aqi = make_accessor("aqi", as_number, name="city_aqi")
city_lonlat = make_accessor("city.geo", as_latlon, name="city_lonlat")
city_name = make_accessor("city.name", str, name="city_name")
city_url = make_accessor("city.url", str, name="city_url")
dominant_pollutant = make_accessor("dominentpol", str, name="dominant_pollutant")
observation_time = make_accessor("time", as_timestamp, name="observation_time")
