"""
Plinko Lounge - Path Recording & Playback Engine

Physics-driven Plinko where outcomes are chosen by weighted draw and shown
by replaying a real recorded trajectory into the chosen bucket.

Modules:
    geometry    board layout as a pure function of the row count
    physics     pymunk world built from the geometry
    trajectory  Position / RecordedPath
    recorder    FastRecorder, VisualRecorder
    playback    PlinkoBoard, GameLoop, ledger
    payouts     multiplier tables, settlement, draw audit
    render      FrameSnapshot and renderers

Usage:
    from sim_engine.plinko.recorder import record_until_filled
    from sim_engine.plinko.playback import PlinkoBoard
    record_until_filled(library, 8)
    board = PlinkoBoard(library, table, BoardSettings(rows=8))
    board.start(); board.drop(); board.run_until_idle()
"""
