"""Drivetrain orchestrator tests"""
import logging
import math

import pytest

from swerve_control.config import DEFAULT_CONFIG
from swerve_control.drivetrain import Drivetrain
from swerve_control.exceptions import ConfigurationError
from swerve_control.geometry import ZERO_OUTPUT, ChassisSpeeds, ModuleOutput, Pose2d

from tests.conftest import FakeHeadingSensor, FakeModuleIO


def test_wrong_number_of_module_ios_is_rejected(square_config, clock):
    ios = [FakeModuleIO(clock) for _ in range(3)]

    with pytest.raises(ConfigurationError):
        Drivetrain(ios, FakeHeadingSensor(), config=square_config, clock=clock)


def test_construction_writes_zero_to_every_actuator(make_drivetrain):
    _, ios, _ = make_drivetrain()

    for io in ios:
        assert io.writes == [ZERO_OUTPUT]


def test_first_cycle_is_not_forced_to_zero(make_drivetrain):
    drivetrain, ios, _ = make_drivetrain()

    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    outputs = drivetrain.periodic()

    assert all(output.drive > 0 for output in outputs)


def test_body_relative_drive(make_drivetrain):
    drivetrain, ios, _ = make_drivetrain()

    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    outputs = drivetrain.periodic()

    for state in drivetrain.get_commanded_module_states():
        assert state.speed == pytest.approx(1.0)
        assert state.angle == pytest.approx(0.0)
    for io, output in zip(ios, outputs):
        assert io.last_write == output
        assert output.azimuth == 0.0
    assert drivetrain.cycle_count == 1


def test_field_relative_drive_uses_pose_heading(make_drivetrain):
    """Field +x at a heading of 90 degrees is body -y"""
    drivetrain, ios, _ = make_drivetrain()
    for io in ios:
        io.angle = -math.pi / 2
    drivetrain.reset_pose(Pose2d(heading=math.pi / 2))

    drivetrain.drive_field_relative(1.0, 0.0, 0.0)
    drivetrain.periodic()

    desired = drivetrain.get_desired_speeds()
    assert desired.vx == pytest.approx(0.0, abs=1e-12)
    assert desired.vy == pytest.approx(-1.0)
    for state in drivetrain.get_commanded_module_states():
        assert state.speed == pytest.approx(1.0)
        assert state.angle == pytest.approx(-math.pi / 2)


def test_commands_lapse_after_one_cycle(make_drivetrain):
    drivetrain, ios, _ = make_drivetrain()

    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    moving = drivetrain.periodic()
    idle = drivetrain.periodic()

    assert all(output.drive > 0 for output in moving)
    assert idle == [ZERO_OUTPUT] * 4
    assert drivetrain.get_desired_speeds() == ChassisSpeeds()


def test_default_command_runs_when_idle(make_drivetrain):
    drivetrain, _, _ = make_drivetrain()
    drivetrain.set_default_command(lambda d: d.drive_body_relative(1.0, 0.0, 0.0))

    assert all(output.drive > 0 for output in drivetrain.periodic())
    assert all(output.drive > 0 for output in drivetrain.periodic())

    # An explicit command takes precedence for its cycle
    drivetrain.drive_body_relative(-1.0, 0.0, 0.0)
    assert all(output.drive < 0 for output in drivetrain.periodic())


def test_failing_default_command_leaves_vehicle_at_rest(make_drivetrain):
    drivetrain, _, _ = make_drivetrain()

    def broken(_):
        raise RuntimeError("joystick unplugged")

    drivetrain.set_default_command(broken)

    assert drivetrain.periodic() == [ZERO_OUTPUT] * 4


def test_idle_modules_keep_their_angle(make_drivetrain):
    drivetrain, ios, _ = make_drivetrain()
    for io in ios:
        io.angle = 0.7

    outputs = drivetrain.periodic()

    assert [s.angle for s in drivetrain.get_commanded_module_states()] == pytest.approx([0.7] * 4)
    assert outputs == [ZERO_OUTPUT] * 4


def test_stance_lock(make_drivetrain):
    drivetrain, _, _ = make_drivetrain()

    drivetrain.to_stance_lock()
    outputs = drivetrain.periodic()

    angles = [math.degrees(s.angle) for s in drivetrain.get_commanded_module_states()]
    assert angles == pytest.approx([45.0, -45.0, -45.0, 45.0])
    assert all(s.speed == 0.0 for s in drivetrain.get_commanded_module_states())
    assert [math.copysign(1.0, o.azimuth) for o in outputs] == [1.0, -1.0, -1.0, 1.0]


def test_stance_lock_on_default_layout(make_drivetrain):
    """The shipped rectangular layout locks at the same +/-45 degree X"""
    drivetrain, _, _ = make_drivetrain(DEFAULT_CONFIG)

    drivetrain.to_stance_lock()
    drivetrain.periodic()

    states = drivetrain.get_commanded_module_states()
    assert [math.degrees(s.angle) for s in states] == pytest.approx([45.0, -45.0, -45.0, 45.0])
    assert all(s.speed == 0.0 for s in states)


def test_stop_overrides_cycle_in_flight(make_drivetrain):
    """A stop issued while a cycle runs forces that cycle's write to zero"""
    drivetrain, ios, _ = make_drivetrain()

    def stop_once():
        ios[0].on_read = None
        drivetrain.stop()

    ios[0].on_read = stop_once
    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    outputs = drivetrain.periodic()

    assert outputs == [ZERO_OUTPUT] * 4
    for io in ios:
        assert io.last_write == ZERO_OUTPUT

    # Motion resumes with the next command
    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    assert all(output.drive > 0 for output in drivetrain.periodic())


def test_stop_writes_immediately_and_discards_queued_command(make_drivetrain):
    drivetrain, ios, _ = make_drivetrain()
    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    drivetrain.periodic()

    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    drivetrain.stop()

    for io in ios:
        assert io.last_write == ZERO_OUTPUT
    assert drivetrain.periodic() == [ZERO_OUTPUT] * 4


def test_command_after_stop_resumes_next_cycle(make_drivetrain):
    drivetrain, _, _ = make_drivetrain()

    drivetrain.stop()
    drivetrain.drive_body_relative(0.5, 0.0, 0.0)

    assert all(output.drive > 0 for output in drivetrain.periodic())


def test_stale_module_is_zeroed_without_affecting_others(make_drivetrain):
    baseline, _, _ = make_drivetrain()
    drivetrain, ios, _ = make_drivetrain()
    ios[1].stale = True

    baseline.drive_body_relative(1.0, 0.5, 0.3)
    drivetrain.drive_body_relative(1.0, 0.5, 0.3)
    expected = baseline.periodic()
    outputs = drivetrain.periodic()

    assert outputs[1] == ZERO_OUTPUT
    for i in (0, 2, 3):
        assert outputs[i] == expected[i]
    faults = drivetrain.get_faults()
    assert list(faults) == ["FR"]
    assert "old" in faults["FR"]


def test_module_exception_is_contained(make_drivetrain, monkeypatch):
    drivetrain, ios, _ = make_drivetrain()
    for io in ios:
        io.velocity = 1.0

    def boom(*args, **kwargs):
        raise RuntimeError("controller blew up")

    monkeypatch.setattr(drivetrain.modules[2], "update", boom)
    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    outputs = drivetrain.periodic()

    assert outputs[2] == ZERO_OUTPUT
    assert all(outputs[i].drive > 0 for i in (0, 1, 3))
    assert "BL" in drivetrain.get_faults()
    # Remaining three modules still feed odometry
    assert drivetrain.get_pose().x > 0


def test_read_exception_faults_module(make_drivetrain):
    drivetrain, ios, _ = make_drivetrain()

    def broken_read():
        raise OSError("CAN timeout")

    ios[3].read = broken_read
    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    outputs = drivetrain.periodic()

    assert outputs[3] == ZERO_OUTPUT
    assert "BR" in drivetrain.get_faults()


def test_fault_logged_once_and_recovery_logged(make_drivetrain, caplog):
    drivetrain, ios, _ = make_drivetrain()
    ios[0].missing = True

    with caplog.at_level(logging.INFO):
        drivetrain.periodic()
        drivetrain.periodic()
        ios[0].missing = False
        drivetrain.periodic()

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING and "FL" in r.getMessage()]
    assert len(warnings) == 1
    assert any("fault cleared" in r.getMessage() for r in caplog.records)
    assert drivetrain.get_faults() == {}


def test_heading_failure_holds_pose(make_drivetrain):
    drivetrain, ios, gyro = make_drivetrain()
    for io in ios:
        io.velocity = 1.0
    gyro.fail = True

    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    outputs = drivetrain.periodic()

    assert drivetrain.get_pose() == Pose2d()
    assert all(output.drive > 0 for output in outputs)


def test_pose_tracks_module_motion(make_drivetrain, clock):
    drivetrain, ios, gyro = make_drivetrain()
    for io in ios:
        io.velocity = 1.0

    for _ in range(100):
        clock.tick(0.01)
        drivetrain.periodic()

    pose = drivetrain.get_pose()
    assert pose.x == pytest.approx(1.0, abs=1e-9)
    assert pose.y == pytest.approx(0.0, abs=1e-9)
    assert drivetrain.get_measured_speeds().vx == pytest.approx(1.0)


def test_command_is_clamped(make_drivetrain, square_config):
    drivetrain, _, _ = make_drivetrain()

    drivetrain.drive_body_relative(100.0, 0.0, -100.0)
    drivetrain.periodic()

    desired = drivetrain.get_desired_speeds()
    assert desired.vx == pytest.approx(square_config.max_linear_velocity)
    assert desired.omega == pytest.approx(-square_config.max_angular_velocity)
    for state in drivetrain.get_commanded_module_states():
        assert abs(state.speed) <= square_config.max_module_speed + 1e-9


def test_outputs_stay_within_voltage_limits(make_drivetrain, square_config):
    drivetrain, ios, _ = make_drivetrain()
    for io in ios:
        io.angle = 2.0
        io.velocity = -3.0

    drivetrain.drive_body_relative(5.0, -5.0, 20.0)
    for output in drivetrain.periodic():
        assert abs(output.drive) <= square_config.max_drive_voltage
        assert abs(output.azimuth) <= square_config.max_azimuth_voltage


def test_configure_pushes_current_limits(make_drivetrain, square_config):
    drivetrain, ios, _ = make_drivetrain()

    drivetrain.configure()

    expected = (square_config.drive_current_limit, square_config.azimuth_current_limit)
    assert all(io.current_limits == expected for io in ios)


def test_telemetry_snapshots(make_drivetrain):
    drivetrain, ios, gyro = make_drivetrain()
    ios[2].velocity = 0.4
    ios[2].angle = 0.1

    drivetrain.periodic()

    orientation = drivetrain.get_orientation()
    assert (orientation.pitch, orientation.roll) == (0.01, -0.02)
    assert drivetrain.get_measured_module_states()[2].speed == 0.4
    assert drivetrain.get_module_outputs() == tuple(io.last_write for io in ios)
    diagnostics = drivetrain.get_diagnostics()
    assert set(diagnostics) == {"FL", "FR", "BL", "BR", "odometry"}
    assert diagnostics["odometry"]["update_count"] == 1


def test_write_failure_does_not_stop_other_modules(make_drivetrain):
    drivetrain, ios, _ = make_drivetrain()

    def broken_write(drive_volts, azimuth_volts):
        raise OSError("bus off")

    ios[0].write = broken_write
    drivetrain.drive_body_relative(1.0, 0.0, 0.0)
    outputs = drivetrain.periodic()

    for io, output in zip(ios[1:], outputs[1:]):
        assert io.last_write == output
        assert isinstance(output, ModuleOutput)
