"""
Plinko Lounge - Physics Engine Adapter

Builds a pymunk world from BoardGeometry. The same builder is used by the
fast recorder, the visual recorder and the live board, so all three see
identical pegs, walls and ground.

Coordinates are canvas pixels with y growing downward; gravity is +y.
Balls never collide with each other: a recorded trajectory must not depend
on whatever else happened to be in flight.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Optional

import pymunk

from sim_engine.plinko.geometry import BoardGeometry, BoxSpec, build_geometry
from sim_engine.plinko.trajectory import Position
from tools.plinko_config import PhysicsConfig

BOARD_CATEGORY = 0b01
BALL_CATEGORY = 0b10

BALL_FILTER = pymunk.ShapeFilter(categories=BALL_CATEGORY, mask=BOARD_CATEGORY)
BOARD_FILTER = pymunk.ShapeFilter(categories=BOARD_CATEGORY)

_ball_ids = itertools.count(1)


@dataclass
class Ball:
    """A live physics ball plus the bookkeeping the loop needs."""
    id: int
    body: pymunk.Body
    shape: pymunk.Circle
    steps: int = 0

    @property
    def position(self) -> Position:
        p = self.body.position
        return Position(float(p.x), float(p.y))


@dataclass
class PlinkoWorld:
    geometry: BoardGeometry
    physics: PhysicsConfig
    space: pymunk.Space
    pegs: list = field(default_factory=list)
    walls: list = field(default_factory=list)
    ground: Optional[pymunk.Shape] = None
    balls: dict = field(default_factory=dict)

    @property
    def rows(self) -> int:
        return self.geometry.rows

    def add_ball(self, x: float, y: float = 0.0) -> Ball:
        radius = self.geometry.ball_radius
        mass = self.physics.ball_mass
        body = pymunk.Body(mass, pymunk.moment_for_circle(mass, 0, radius))
        body.position = (x, y)
        shape = pymunk.Circle(body, radius)
        shape.elasticity = self.physics.ball_elasticity
        shape.friction = self.physics.ball_friction
        shape.filter = BALL_FILTER
        self.space.add(body, shape)
        ball = Ball(id=next(_ball_ids), body=body, shape=shape)
        self.balls[ball.id] = ball
        return ball

    def remove_ball(self, ball: Ball):
        if self.balls.pop(ball.id, None) is not None:
            self.space.remove(ball.body, ball.shape)

    def step(self):
        """Advance one frame (FRAME_DT), split into substeps for stability."""
        sub_dt = self.physics.frame_dt / self.physics.substeps
        for _ in range(self.physics.substeps):
            self.space.step(sub_dt)
        for ball in self.balls.values():
            ball.steps += 1

    def has_landed(self, ball: Ball) -> bool:
        return self.geometry.is_landed(ball.body.position.y)

    def clear(self):
        for ball in list(self.balls.values()):
            self.remove_ball(ball)

    def describe(self) -> dict:
        """Static body layout, for comparing two worlds built alike."""
        return {
            "pegs": [(tuple(s.body.position), s.radius, s.elasticity) for s in self.pegs],
            "walls": [(tuple(s.body.position), s.body.angle,
                       tuple(tuple(v) for v in s.get_vertices()), s.elasticity)
                      for s in self.walls],
            "ground": (tuple(self.ground.body.position), self.ground.sensor),
        }


def _static_box(space: pymunk.Space, spec: BoxSpec, elasticity: float,
                sensor: bool = False) -> pymunk.Poly:
    body = pymunk.Body(body_type=pymunk.Body.STATIC)
    body.position = (spec.cx, spec.cy)
    body.angle = spec.angle
    shape = pymunk.Poly.create_box(body, (spec.width, spec.height))
    shape.elasticity = elasticity
    shape.friction = 1.0
    shape.sensor = sensor
    shape.filter = BOARD_FILTER
    space.add(body, shape)
    return shape


def build_board(rows: int, physics: Optional[PhysicsConfig] = None) -> PlinkoWorld:
    """Construct the pymunk world for `rows`. Pure in its inputs."""
    physics = physics or PhysicsConfig()
    geometry = build_geometry(rows)

    space = pymunk.Space()
    space.gravity = (0, physics.gravity)
    world = PlinkoWorld(geometry=geometry, physics=physics, space=space)

    for x, y in geometry.pegs:
        body = pymunk.Body(body_type=pymunk.Body.STATIC)
        body.position = (x, y)
        shape = pymunk.Circle(body, geometry.peg_radius)
        shape.elasticity = 1.0
        shape.friction = 1.0
        shape.filter = BOARD_FILTER
        space.add(body, shape)
        world.pegs.append(shape)

    world.ground = _static_box(space, geometry.ground, 1.0, sensor=True)
    world.walls = [_static_box(space, spec, 1.0) for spec in geometry.walls]
    return world
