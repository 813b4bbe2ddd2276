import pytest

from src.utils.runtime_config import (
    MASK,
    apply_config_update,
    mask_secrets,
    normalise_config_update,
    validate_config_update,
)

CURRENT = {
    "exchange": {"simulation": True, "position_mode": "long_short"},
    "trading": {"instrument_id": "ETH-USDT-SWAP", "poll_interval_seconds": 5},
    "ai": {"model": "deepseek-chat"},
    "credentials": {
        "okx_api_key": "public-key",
        "okx_secret_key": "real-secret",
        "okx_passphrase": "real-pass",
        "deepseek_api_key": "sk-real",
    },
}


def test_partial_update_merges_and_leaves_input_untouched():
    out = apply_config_update(CURRENT, {"exchange": {"simulation": False}})
    assert out["exchange"] == {"simulation": False, "position_mode": "long_short"}
    assert out["trading"] == CURRENT["trading"]
    assert CURRENT["exchange"]["simulation"] is True


def test_masked_secret_keeps_stored_value():
    out = apply_config_update(CURRENT, {"credentials": {"okx_secret_key": MASK, "deepseek_api_key": "sk-new"}})
    assert out["credentials"]["okx_secret_key"] == "real-secret"
    assert out["credentials"]["deepseek_api_key"] == "sk-new"


def test_unknown_key_is_rejected():
    with pytest.raises(ValueError, match="Unsupported config key: trading.made_up_key"):
        apply_config_update(CURRENT, {"trading": {"made_up_key": 1}})


def test_instrument_is_not_runtime_editable():
    with pytest.raises(ValueError, match="Unsupported config key"):
        validate_config_update({"trading": {"instrument_id": "BTC-USDT-SWAP"}})


def test_non_bool_simulation_is_rejected():
    with pytest.raises(ValueError, match="must be boolean"):
        apply_config_update(CURRENT, {"exchange": {"simulation": "false"}})


def test_bad_position_mode_is_rejected():
    with pytest.raises(ValueError, match="position_mode"):
        apply_config_update(CURRENT, {"exchange": {"position_mode": "hedge"}})


def test_non_ascii_credential_is_rejected():
    with pytest.raises(ValueError, match="ASCII"):
        apply_config_update(CURRENT, {"credentials": {"okx_passphrase": "пароль"}})


@pytest.mark.parametrize(
    "patch",
    [
        {"sizing": {"safety_factor": 1.5}},
        {"rolling": {"profit_fraction": -0.1}},
        {"trading": {"poll_interval_seconds": 0}},
        {"ai": {"model": "  "}},
    ],
)
def test_out_of_range_values_are_rejected(patch):
    with pytest.raises(ValueError):
        apply_config_update(CURRENT, patch)


def test_legacy_flat_keys_are_translated():
    update = normalise_config_update({"isSimulation": False, "deepseekApiKey": "sk-x", "okxApiKey": "k2"})
    assert update == {
        "exchange": {"simulation": False},
        "credentials": {"deepseek_api_key": "sk-x", "okx_api_key": "k2"},
    }


def test_legacy_and_nested_credentials_combine():
    out = apply_config_update(CURRENT, {"okxSecretKey": MASK, "credentials": {"okx_passphrase": "new-pass"}})
    assert out["credentials"]["okx_secret_key"] == "real-secret"
    assert out["credentials"]["okx_passphrase"] == "new-pass"


def test_non_object_update_is_rejected():
    with pytest.raises(ValueError, match="must be an object"):
        normalise_config_update(["simulation"])


def test_mask_secrets_hides_only_populated_secrets():
    cfg = dict(CURRENT, credentials=dict(CURRENT["credentials"], okx_passphrase=""))
    masked = mask_secrets(cfg)
    creds = masked["credentials"]
    assert creds["okx_secret_key"] == MASK
    assert creds["deepseek_api_key"] == MASK
    assert creds["okx_passphrase"] == ""
    assert creds["okx_api_key"] == "public-key"
    assert CURRENT["credentials"]["okx_secret_key"] == "real-secret"
