from mlsim.script import ScriptState

LOOP_FOREVER = """
while True:
    Controls.read()
"""


def run_ticks(scheduler, clock, count, step_ms):
    for _ in range(count):
        clock.advance(step_ms)
        scheduler.tick()


def test_three_iterations_then_finished(make_scheduler, write_script, capsys):
    path = write_script(
        "three.py",
        """
        for i in range(3):
            print("iteration", i)
            Controls.read()
        """,
    )
    scheduler = make_scheduler(update_rate=0)
    assert scheduler.load_script(str(path))
    scheduler.start_script()
    for _ in range(10):
        scheduler.tick()
        if scheduler.get_state() is ScriptState.FINISHED:
            break
    assert scheduler.get_total_updates() == 3
    assert scheduler.get_state() is ScriptState.FINISHED
    assert capsys.readouterr().out.count("iteration") == 3


def test_error_on_second_iteration(make_scheduler, write_script):
    path = write_script(
        "crash.py",
        """
        count = 0
        while True:
            count += 1
            if count == 2:
                raise ValueError("boom on second pass")
            Controls.read()
        """,
    )
    scheduler = make_scheduler()
    errors = []
    scheduler.bus.attach("scriptError", lambda event, name, message: errors.append(message))
    scheduler.load_script(str(path))
    scheduler.start_script()
    scheduler.tick()
    assert scheduler.get_state() is ScriptState.RUNNING
    scheduler.tick()
    assert scheduler.get_state() is ScriptState.ERROR
    assert len(errors) == 1
    assert "boom on second pass" in errors[0]
    assert "crash.py" in errors[0]
    assert " / " in errors[0]
    assert "tasks.py" not in errors[0]
    scheduler.tick()
    scheduler.tick()
    assert len(errors) == 1
    assert scheduler.status()["last_error"] == errors[0]


def test_update_rate_gates_resumes(make_scheduler, write_script, clock):
    scheduler = make_scheduler(update_rate=10)
    scheduler.load_script(str(write_script("loop.py", LOOP_FOREVER)))
    scheduler.start_script()
    run_ticks(scheduler, clock, 100, 10)
    assert 9 <= scheduler.get_total_updates() <= 11


def test_remainder_is_carried_over(make_scheduler, write_script, clock):
    scheduler = make_scheduler(update_rate=10)
    scheduler.load_script(str(write_script("loop.py", LOOP_FOREVER)))
    scheduler.start_script()
    run_ticks(scheduler, clock, 100, 30)
    # 3000 ms at 10 UPS, with ticks every 30 ms that never align with 100 ms
    assert 29 <= scheduler.get_total_updates() <= 31


def test_unlimited_update_rate_resumes_every_tick(make_scheduler, write_script, clock):
    scheduler = make_scheduler(update_rate=0)
    scheduler.load_script(str(write_script("loop.py", LOOP_FOREVER)))
    scheduler.start_script()
    for _ in range(25):
        scheduler.tick()
    assert scheduler.get_total_updates() == 25


def test_rates_are_clamped_and_reset_baselines(make_scheduler, clock):
    scheduler = make_scheduler(update_rate=30, render_rate=30)
    clock.advance(500)
    scheduler.set_target_update_rate(-5)
    scheduler.set_target_render_rate(-1)
    assert scheduler.get_target_update_rate() == 0
    assert scheduler.get_target_render_rate() == 0
    assert scheduler.last_update_timestamp == 500
    assert scheduler.last_render_timestamp == 500
    scheduler.set_target_update_rate(20)
    assert scheduler.get_target_update_rate() == 20


def test_render_rate_gates_repaints(make_scheduler, write_script, clock, host):
    scheduler = make_scheduler(update_rate=0, render_rate=10)
    path = write_script(
        "draw.py",
        """
        while True:
            startDrawing()
            stopDrawing()
            Controls.read()
        """,
    )
    scheduler.load_script(str(path))
    scheduler.start_script()
    run_ticks(scheduler, clock, 100, 10)
    assert scheduler.get_total_updates() == 100
    assert 9 <= host.repaints <= 11
    assert host.last_show_previous is False


def test_ups_and_fps_accounting(make_scheduler, write_script, clock):
    scheduler = make_scheduler(update_rate=0)
    ups_updates = []
    fps_updates = []
    scheduler.bus.attach("upsUpdate", lambda event, ups: ups_updates.append(ups))
    scheduler.bus.attach("fpsUpdate", lambda event, fps: fps_updates.append(fps))
    scheduler.load_script(str(write_script("draw.py", "while True:\n    screen.render()\n    Controls.read()\n")))
    scheduler.start_script()
    run_ticks(scheduler, clock, 250, 10)
    assert scheduler.get_total_updates() == 250
    assert ups_updates[0] in (100, 101)
    assert 99 <= scheduler.get_current_ups() <= 101
    assert 99 <= scheduler.get_current_fps() <= 101
    assert scheduler.registry.get("screen").getFps() == scheduler.get_current_fps()
    assert len(fps_updates) == 2


def test_previous_frame_repaint_when_script_does_not_draw(make_scheduler, write_script, clock, host):
    scheduler = make_scheduler(update_rate=0, render_rate=0)
    scheduler.load_script(str(write_script("loop.py", LOOP_FOREVER)))
    scheduler.start_script()
    scheduler.tick()
    assert host.repaints >= 1
    assert host.last_show_previous is True


def test_debug_step_runs_one_iteration_at_a_time(make_scheduler, write_script):
    scheduler = make_scheduler()
    path = write_script("step.py", "count = 0\nwhile True:\n    count += 1\n    Controls.read()\n")
    scheduler.load_script(str(path))
    scheduler.start_script()
    scheduler.tick()
    namespace = scheduler.unit.namespace
    assert namespace["count"] == 1

    scheduler.debug_step_script()
    assert scheduler.get_state() is ScriptState.PAUSED
    assert scheduler.debug_mode_enabled() is True

    scheduler.debug_step_script()
    assert scheduler.get_state() is ScriptState.RUNNING
    scheduler.tick()
    assert namespace["count"] == 2
    assert scheduler.get_state() is ScriptState.PAUSED
    scheduler.tick()
    scheduler.tick()
    assert namespace["count"] == 2

    scheduler.debug_step_script()
    scheduler.tick()
    assert namespace["count"] == 3
    assert scheduler.get_state() is ScriptState.PAUSED

    scheduler.resume_script()
    assert scheduler.debug_mode_enabled() is False
    scheduler.tick()
    scheduler.tick()
    assert namespace["count"] == 5
    assert scheduler.get_state() is ScriptState.RUNNING

    scheduler.debug_step_script()
    assert scheduler.get_state() is ScriptState.PAUSED
    scheduler.pause_or_resume_script()
    assert scheduler.debug_mode_enabled() is False
    assert scheduler.get_state() is ScriptState.RUNNING


def test_start_clears_debug_mode(make_scheduler, write_script):
    scheduler = make_scheduler()
    scheduler.load_script(str(write_script("loop.py", LOOP_FOREVER)))
    scheduler.debug_step_script()
    assert scheduler.debug_mode_enabled() is True
    scheduler.start_script()
    assert scheduler.debug_mode_enabled() is False


def test_yield_inside_protected_call(make_scheduler, write_script):
    path = write_script(
        "pcall.py",
        """
        trace = []

        def body(n):
            for i in range(n):
                Controls.read()
            return n * 10

        trace.append(pcall(body, 2))
        Controls.read()
        trace.append(pcall(lambda: pcall(body, 1)))
        """,
    )
    scheduler = make_scheduler()
    scheduler.load_script(str(path))
    scheduler.start_script()
    for _ in range(3):
        scheduler.tick()
    namespace = scheduler.unit.namespace
    assert namespace["trace"] == [(True, 20)]
    assert scheduler.get_total_updates() == 3
    scheduler.tick()
    scheduler.tick()
    assert namespace["trace"] == [(True, 20), (True, (True, 10))]
    assert scheduler.get_total_updates() == 4
    assert scheduler.get_state() is ScriptState.FINISHED


def test_stop_from_inside_script(make_scheduler, write_script):
    scheduler = make_scheduler()
    scheduler.registry.register("sim", scheduler)
    path = write_script("selfstop.py", "Controls.read()\nsim.stop_script()\nControls.read()\nreached = True\n")
    scheduler.load_script(str(path))
    scheduler.start_script()
    scheduler.tick()
    namespace = scheduler.unit.namespace
    scheduler.tick()
    assert scheduler.get_state() is ScriptState.STOPPED
    assert "reached" not in namespace
