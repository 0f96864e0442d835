"""Entry point for `python -m instapod`.

Delegates to `python -m instapod.cli`, which serves the feed and runs the scheduler.
"""
import runpy
runpy.run_module("instapod.cli", run_name="__main__", alter_sys=True)
