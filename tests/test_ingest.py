from __future__ import annotations

from collections.abc import Callable

import pytest

from hm2mqtt.ingest import TelegramRouter
from hm2mqtt.models.device import Device
from hm2mqtt.schema.registry import SchemaOptions, build_default_registry
from hm2mqtt.state.store import DeviceStateStore

HMA_TELEGRAM = (
    "p1=0,p2=0,w1=0,w2=0,pe=14,vv=224,sv=3,cs=0,cd=0,am=0,o1=0,o2=0,do=90,lv=800,cj=1,kn=313,g1=0,g2=0,"
    "b1=0,b2=0,md=0,d1=1,e1=0:0,f1=23:59,h1=800,d2=0,e2=0:0,f2=23:59,h2=200,d3=0,e3=0:0,f3=23:59,h3=800,"
    "sg=0,sp=80,st=0,tl=12,th=13,tc=0,tf=0,fc=202310231502,id=5,a0=14,a1=0,a2=0,l0=0,l1=0,c0=255,c1=4,"
    "bc=622,bs=512,pt=1552,it=1332,m0=0,m1=0,m2=0,m3=0,d4=0,e4=2:0,f4=23:59,h4=50,d5=0,e5=0:0,f5=23:59,"
    "h5=347,lmo=1377,lmi=614,lmf=0,uv=10"
)
MINIMAL_TELEGRAM = "pe=75,kn=500,lv=300,e1=0:0,do=90,p1=0,p2=0,w1=0,w2=0,vv=224,o1=0,o2=0,g1=0,g2=0"
EXTRA_BATTERY_TELEGRAM = "p1=1,p2=1,m1=31000,m2=30500,w1=100,w2=90,e1=1,e2=1,o1=1,o2=1,g1=50,g2=40,i1=230000"


def _route(store: DeviceStateStore, payload: str) -> tuple[Device, list[str]]:
    device = store.devices()[0]
    return device, TelegramRouter(store).handle(device, payload)


def test_b2500_v2_runtime_telegram(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device, updated = _route(store, HMA_TELEGRAM)

    assert updated == ["data"]
    state = store.state_for_channel(device, "data")
    assert state["batteryPercentage"] == 14
    assert state["batteryCapacity"] == 313
    assert state["deviceInfo"] == {
        "deviceVersion": 224,
        "deviceSubversion": 3,
        "fc42dVersion": "202310231502",
        "deviceIdNumber": 5,
        "bootloaderVersion": 10,
    }
    assert state["temperature"]["min"] == 12
    assert state["temperature"]["max"] == 13
    assert state["timePeriods"][0] == {
        "enabled": True,
        "startTime": "00:00",
        "endTime": "23:59",
        "outputValue": 800,
    }
    assert state["timePeriods"][3]["startTime"] == "02:00"
    assert state["dailyStats"] == {
        "batteryChargingPower": 622,
        "batteryDischargePower": 512,
        "photovoltaicChargingPower": 1552,
        "microReverseOutputPower": 1332,
    }
    assert state["ratedPower"] == {"output": 1377, "input": 614, "isLimited": False}
    assert state["scene"] == "night"
    assert state["ctInfo"]["connectedPhase"] == "unknown"
    assert state["ctInfo"]["status"] == "notInDiagnosis"
    assert state["useFlashCommands"] is True
    assert "timestamp" in state


def test_unknown_scene_maps_to_none(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device, _ = _route(store, HMA_TELEGRAM.replace("cj=1", "cj=3"))
    assert store.state_for_channel(device, "data")["scene"] is None


def test_missing_fields_keep_previous_values(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device, _ = _route(store, HMA_TELEGRAM)
    TelegramRouter(store).handle(device, MINIMAL_TELEGRAM)

    state = store.state_for_channel(device, "data")
    assert state["batteryPercentage"] == 75
    assert state["batteryCapacity"] == 500
    assert state["dailyStats"]["batteryChargingPower"] == 622
    assert state["timePeriods"][0]["outputValue"] == 800
    assert len(state["timePeriods"]) == 5


def test_extra_battery_channel_disabled_by_default(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMA-1")
    device, updated = _route(store, EXTRA_BATTERY_TELEGRAM)
    assert updated == []
    assert not store.has_state(device, "extraBatteryData")


def test_extra_battery_channel_routed_when_enabled() -> None:
    registry = build_default_registry(SchemaOptions(poll_extra_battery_data=True))
    device = Device(device_type="HMA-1", device_id="a")
    store = DeviceStateStore(registry, [device])

    updated = TelegramRouter(store).handle(device, EXTRA_BATTERY_TELEGRAM)

    assert updated == ["extraBatteryData"]
    state = store.state_for_channel(device, "extraBatteryData")
    assert state["input1"]["voltage"] == pytest.approx(31.0)
    assert state["input2"]["voltage"] == pytest.approx(30.5)
    assert state["output1"]["voltage"] == pytest.approx(230.0)
    assert state["output1"]["power"] == 50
    assert not store.has_state(device, "data")


@pytest.mark.parametrize("payload", ["", "garbage", "foo=bar,baz=1", b"pe=10"])
def test_non_matching_telegram_updates_nothing(
    store_for: Callable[..., DeviceStateStore], payload: str | bytes
) -> None:
    store = store_for("HMA-1")
    device, updated = _route(store, payload)
    assert updated == []
    assert not store.has_state(device, "data")


def test_ct002_telegram(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HME-4")
    device, updated = _route(
        store,
        "pwr_a=119,pwr_b=15,pwr_c=-136,pwr_t=-1,ble_s=5,wif_r=-79,fc4_v=202409090159,ver_v=119,wif_s=2,slv_n=1,cur_d=0",
    )
    assert updated == ["data"]
    state = store.state_for_channel(device, "data")
    assert state["phase1Power"] == 119
    assert state["phase2Power"] == 15
    assert state["phase3Power"] == -136
    assert state["totalPower"] == -1
    assert state["wifiRssi"] == -79
    assert state["fc4Version"] == "202409090159"
    assert state["firmwareVersion"] == 119


def test_mi800_telegram(store_for: Callable[..., DeviceStateStore]) -> None:
    store = store_for("HMI-1")
    device, updated = _route(
        store,
        "ele_d=53,ele_w=3984,ele_m=3984,pv1_v=335,pv1_i=3,pv1_p=39,pv1_s=1,pv2_v=341,pv2_i=11,pv2_p=38,"
        "pv2_s=1,pe1_v=17,fb1_v=832,fb2_v=773,grd_f=5001,grd_v=2543,grd_s=1,grd_o=72,chp_t=36,rel_s=1,"
        "err_t=0,err_c=0,err_d=0,ver_s=106,mpt_m=1,ble_s=2",
    )
    assert updated == ["data"]
    state = store.state_for_channel(device, "data")
    assert state["dailyEnergyGenerated"] == pytest.approx(0.53)
    assert state["weeklyEnergyGenerated"] == pytest.approx(39.84)
    assert state["pv1Voltage"] == pytest.approx(33.5)
    assert state["pv1Current"] == pytest.approx(0.3)
    assert state["pv1Status"] is True
    assert state["gridFrequency"] == pytest.approx(50.01)
    assert state["gridVoltage"] == pytest.approx(254.3)
    assert state["gridStatus"] is True
    assert state["firmwareVersion"] == 106
    assert state["mode"] == "b2500Boost"


def test_venus_time_periods_are_decoded(store_for: Callable[..., DeviceStateStore]) -> None:
    keys = (
        "cel_p", "cel_c", "tot_i", "tot_o", "ele_d", "ele_m", "grd_d", "grd_m", "inc_d", "inc_m", "inc_a",
        "grd_f", "grd_o", "grd_t", "gct_s", "cel_s", "err_t", "err_a", "dev_n", "grd_y",
    )
    payload = ",".join(f"{key}=1" for key in keys) + ",wor_m=1,tim_0=8|0|20|30|62|500|1,tim_1=bad"
    store = store_for("HMG-1")
    device, updated = _route(store, payload)

    assert updated == ["data"]
    state = store.state_for_channel(device, "data")
    assert state["workingMode"] == "manual"
    assert state["batteryCapacity"] == 10
    assert state["timePeriods"][0] == {
        "startTime": "8:00",
        "endTime": "20:30",
        "weekday": "12345",
        "power": 500,
        "enabled": True,
    }
    assert state["timePeriods"][1]["enabled"] is False
    assert state["timePeriods"][1]["weekday"] == "0123456"
