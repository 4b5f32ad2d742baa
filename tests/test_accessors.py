"""Unit tests for accessors.py: generic field projection through the pipeline."""

import pytest

from accessors import (
    as_number,
    city_aqi,
    city_lonlat,
    city_name,
    city_url,
    dominant_pollutant,
    make_accessor,
    observation_time,
)
from cache_store import ApplicationFault, MissingFieldError
from conftest import feed_for


# =========================================================================
# Built-in accessors
# =========================================================================

class TestCityAqi:
    def test_returns_numeric_index(self, live_pipeline, transport):
        transport.responses["Osaka"] = feed_for("Osaka", 57)
        assert city_aqi("Osaka") == 57

    def test_numeric_string_converted(self, live_pipeline, transport):
        transport.responses["Osaka"] = feed_for("Osaka", "57")
        assert city_aqi("Osaka") == 57

    def test_dash_index_is_missing(self, live_pipeline, transport):
        transport.responses["Osaka"] = feed_for("Osaka", "-")
        with pytest.raises(MissingFieldError):
            city_aqi("Osaka")

    def test_fault_raises(self, live_pipeline):
        with pytest.raises(MissingFieldError) as exc:
            city_aqi("Nowhere")
        assert "Unknown station" in str(exc.value)
        assert exc.value.place == "Nowhere"
        assert isinstance(exc.value.__cause__, ApplicationFault)

    def test_transport_failure_raises(self, live_pipeline):
        with pytest.raises(MissingFieldError, match="no data retrieved"):
            city_aqi("Offline")

    def test_resolves_through_pipeline(self, cached_pipeline, transport):
        city_aqi("Taipei")
        city_aqi("Taipei")
        assert transport.calls_for("Taipei") == 1

    def test_live_policy_refetches(self, live_pipeline, transport):
        city_aqi("Taipei")
        city_aqi("Taipei")
        assert transport.calls_for("Taipei") == 2

    def test_explicit_pipeline_argument(self, cached_pipeline, transport):
        assert city_aqi("Taipei", pipeline=cached_pipeline) == 42


class TestOtherAccessors:
    def test_lonlat(self, live_pipeline):
        assert city_lonlat("Taipei") == "25.033, 121.5654"

    def test_lonlat_missing_geo(self, live_pipeline, transport):
        body = feed_for("Osaka", 10)
        del body["data"]["city"]["geo"]
        transport.responses["Osaka"] = body
        with pytest.raises(MissingFieldError):
            city_lonlat("Osaka")

    def test_lonlat_short_geo(self, live_pipeline, transport):
        body = feed_for("Osaka", 10)
        body["data"]["city"]["geo"] = [34.69]
        transport.responses["Osaka"] = body
        with pytest.raises(MissingFieldError):
            city_lonlat("Osaka")

    def test_name_url_pollutant(self, live_pipeline):
        assert city_name("Taipei") == "Taipei"
        assert city_url("Taipei") == "https://aqicn.org/city/taiwan/taipei"
        assert dominant_pollutant("Taipei") == "pm25"

    def test_observation_time(self, live_pipeline):
        assert observation_time("Taipei") == "2024-03-01 14:00:00 +08:00"

    def test_observation_time_without_tz(self, live_pipeline, transport):
        transport.responses["Osaka"] = feed_for("Osaka", 10, time={"s": "2024-03-01 15:00:00"})
        assert observation_time("Osaka") == "2024-03-01 15:00:00"


# =========================================================================
# Factory
# =========================================================================

class TestMakeAccessor:
    def test_raw_value_without_transform(self, live_pipeline):
        pm10 = make_accessor(("iaqi", "pm10", "v"))
        assert pm10("Taipei") == 18

    def test_dotted_path_and_transform(self, live_pipeline):
        humidity = make_accessor("iaqi.h.v", lambda v: f"{v}%")
        assert humidity("Taipei") == "70%"

    def test_missing_path_raises(self, live_pipeline):
        so2 = make_accessor("iaqi.so2.v")
        with pytest.raises(MissingFieldError):
            so2("Taipei")

    def test_name_and_path_exposed(self):
        acc = make_accessor("iaqi.pm25.v", name="city_pm25")
        assert acc.__name__ == "city_pm25"
        assert acc.field_path == ("iaqi", "pm25", "v")

    def test_default_name_from_path(self):
        assert make_accessor("city.name").__name__ == "accessor_city_name"

    def test_empty_place_means_here(self, live_pipeline, transport):
        transport.responses["here"] = feed_for("Hsinchu", 30)
        assert city_aqi() == 30
        assert transport.calls == ["here"]


class TestAsNumber:
    def test_int_passthrough(self):
        assert as_number(5) == 5

    def test_float_string(self):
        assert as_number("5.5") == 5.5

    def test_bool_rejected(self):
        with pytest.raises(ValueError):
            as_number(True)

    def test_dash_rejected(self):
        with pytest.raises(ValueError):
            as_number("-")
