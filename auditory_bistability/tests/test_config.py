import pytest

from auditory_bistability.pipeline.config import (
    BistableSettings,
    ModelParams,
    Quantity,
    check_params,
    parse_quantity,
)
from auditory_bistability.pipeline.config_loader import read_params, read_settings
from auditory_bistability.pipeline.errors import ConfigurationError, UnknownSettingsKeyError
from auditory_bistability.pipeline.utils_config import apply_dotted_overrides, cfg_get


@pytest.mark.parametrize(
    "text,value,unit",
    [
        ("240ms", 0.24, "s"),
        ("1.5 s", 1.5, "s"),
        ("500Hz", 500.0, "Hz"),
        ("0.5 kHz", 500.0, "Hz"),
        ("3", 3.0, ""),
    ],
)
def test_parse_quantity(text, value, unit):
    q = parse_quantity(text)
    assert q.value == pytest.approx(value)
    assert q.unit == unit


@pytest.mark.parametrize("text", ["5 parsecs", "fast", "", "1.2.3 s"])
def test_parse_quantity_rejects_garbage(text):
    with pytest.raises(ConfigurationError):
        parse_quantity(text)


def test_default_params_pass_unit_check():
    params = read_params()
    check_params(params)
    assert params.seconds("delta_t") == pytest.approx(0.12)
    assert params.hertz("f") == pytest.approx(500.0)


def test_missing_param_is_reported_by_name():
    params = read_params({"delta_t": "100ms", "f": "400Hz"})
    with pytest.raises(ConfigurationError, match="f_tau_sigma"):
        check_params(params)


def test_wrong_unit_is_rejected():
    params = read_params(None, overrides={"s_tau_a": "3Hz"})
    with pytest.raises(ConfigurationError, match="s_tau_a"):
        check_params(params)


def test_unitless_time_constant_is_rejected():
    params = read_params(None, overrides={"t_tau_x": 0.05})
    with pytest.raises(ConfigurationError):
        check_params(params)


def test_read_params_accepts_greek_keys():
    params = read_params(None, overrides={"Δt": "240ms", "f_τ_σ": "1s"})
    assert params.delta_t.unit == "s"
    assert params.delta_t.value == pytest.approx(0.24)
    assert params.f_tau_sigma == Quantity(1.0, "s")


def test_read_params_unknown_key():
    with pytest.raises(UnknownSettingsKeyError):
        read_params({"f_tau_q": "1s"})


def test_read_params_is_idempotent():
    params = read_params()
    assert read_params(params) is params
    changed = read_params(params, overrides={"delta_f": 3})
    assert changed is not params
    assert changed.delta_f == 3.0
    assert params.delta_f == 6.0


def test_read_settings_default_and_idempotent():
    settings = read_settings()
    assert isinstance(settings, BistableSettings)
    assert read_settings(settings) is settings
    assert settings.rates["freq_limits_Hz"] == [200.0, 2000.0]


def test_read_settings_overrides_copy():
    settings = read_settings()
    changed = read_settings(settings, {"nmf.ncomponents": 4, "track.analyze.source_sigma": 0.5})
    assert changed is not settings
    assert changed.nmf["ncomponents"] == 4
    assert changed.track.analyze["source_sigma"] == 0.5
    assert settings.nmf["ncomponents"] == 2


def test_read_settings_mapping_merges_sections():
    settings = read_settings({"seed": 9, "nmf": {"ncomponents": 3}, "scales": {"bistable": {"c_a": 2.0}}})
    assert settings.seed == 9
    assert settings.nmf["ncomponents"] == 3
    assert settings.nmf["window_ms"] == 1000.0
    assert settings.scales.bistable["c_a"] == 2.0
    assert settings.scales.bistable["c_m"] == 0.5


@pytest.mark.parametrize(
    "data",
    [
        {"bogus": 1},
        {"nmf": {"bogus": 1}},
        {"freqs": {"bistable": {"c_q": 1.0}}},
    ],
)
def test_read_settings_unknown_keys(data):
    with pytest.raises(UnknownSettingsKeyError):
        read_settings(data)


def test_read_settings_table_type_error():
    with pytest.raises(ConfigurationError):
        read_settings({"nmf": 3})


def test_unknown_dotted_override():
    with pytest.raises(UnknownSettingsKeyError, match="nmf.bogus"):
        read_settings(None, {"nmf.bogus": 1})


def test_toml_file_with_settings_and_params(tmp_path):
    path = tmp_path / "model.toml"
    path.write_text(
        "\n".join([
            "seed = 3",
            "[nmf]",
            "ncomponents = 3",
            "[freqs.bistable]",
            '"c_σ" = 0.3',
            "[params]",
            '"Δt" = "240ms"',
            'f = "400Hz"',
            "delta_f = 9",
        ]),
        encoding="utf-8",
    )
    settings = read_settings(path)
    assert settings.seed == 3
    assert settings.nmf["ncomponents"] == 3
    assert settings.freqs.bistable["c_sigma"] == 0.3

    params = read_params(path)
    assert params.delta_t.value == pytest.approx(0.24)
    assert params.hertz("f") == pytest.approx(400.0)
    assert params.delta_f == 9.0
    with pytest.raises(ConfigurationError):
        check_params(params)


def test_apply_dotted_overrides_tracks_provenance():
    settings = BistableSettings()
    provenance = {}
    apply_dotted_overrides(settings, {"mask.order": 2, "seed": None}, provenance, source="cli")
    assert settings.mask["order"] == 2
    assert settings.seed is None
    assert provenance == {"mask.order": "cli", "seed": "cli"}
    assert cfg_get(settings, "mask.order") == 2
    assert cfg_get(settings, "mask.nothing", "x") == "x"


def test_model_params_accessors_check_units():
    params = ModelParams(delta_t=Quantity(0.1, "s"))
    assert params.seconds("delta_t") == pytest.approx(0.1)
    with pytest.raises(ConfigurationError):
        params.hertz("delta_t")
