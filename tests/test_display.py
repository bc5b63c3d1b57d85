from control.display import PLACEHOLDER, format_display, integer_text, one_decimal_text
from control.geometry import Point3D
from data.formats.data_format import VehicleState


def _state(in_lane=True, speed=47.9, offset=-0.45):
    return VehicleState(
        position=Point3D(12.7, -3.2, 0.5),
        heading_deg=0.0,
        speed_mph=speed,
        lateral_offset_m=offset,
        in_lane=in_lane,
    )


def test_integer_text_truncates_toward_zero():
    assert integer_text(47.9) == "47"
    assert integer_text(-3.7) == "-3"
    assert integer_text(-0.4) == "-0"
    assert integer_text(25) == "25"
    assert integer_text(1e-05) == "0"


def test_one_decimal_text_cuts_without_rounding():
    assert one_decimal_text(-0.45) == "-0.4"
    assert one_decimal_text(1.99) == "1.9"
    assert one_decimal_text(2.0) == "2.0"


def test_engaged_in_lane_display():
    frame = format_display(_state(), engaged=True, steering_angle_deg=-10.7,
                           brake_level=0.3, lane_point_count=25)
    assert frame.to_dict() == {
        "velocity": "47",
        "lane_position": "-0.4",
        "steering": "-10",
        "brake": "0.3",
        "x": "12",
        "y": "-3",
        "z": "0",
        "lane_points": "25",
    }


def test_out_of_lane_hides_lane_position_only():
    frame = format_display(_state(in_lane=False), engaged=True, steering_angle_deg=4.2)
    assert frame.lane_position == PLACEHOLDER
    assert frame.steering == "4"


def test_disengaged_hides_everything_but_velocity():
    frame = format_display(_state(in_lane=False), engaged=False)
    values = frame.to_dict()
    assert values.pop("velocity") == "47"
    assert set(values.values()) == {PLACEHOLDER}


def test_no_state_yet():
    frame = format_display(None, engaged=True)
    assert set(frame.to_dict().values()) == {PLACEHOLDER}
