import math
import pathlib
import random
import sys
import unittest
from unittest import mock


ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import flock_body
import flock_brain as brain
from flock_body import Agent, Eye, Status, World, wrap_angle
from flock_brain import Topology
from flock_constants import FOOD_GOAL, FOV_RANGE, STALL_TICKS, SURVIVAL_REWARD, WORST_FITNESS
from flock_errors import ConfigurationError, NumericFault
from flock_fitness import AgentFrame, agent_rng, evaluate_agent, score_agent
from flock_genome import create_random

TOPOLOGY = Topology(inputs=4, hidden=(6,), outputs=2)
SPEED_BIAS = TOPOLOGY.gene_count - 2
ROTATION_BIAS = TOPOLOGY.gene_count - 1
FAR_WORLD = World(seed=0, food=((0.05, 0.95),), respawn=((0.05, 0.95),))


def motor_genome(speed_bias: float = 0.0, rotation_bias: float = 0.0) -> tuple[float, ...]:
    genes = [0.0] * TOPOLOGY.gene_count
    genes[SPEED_BIAS] = speed_bias
    genes[ROTATION_BIAS] = rotation_bias
    return tuple(genes)


class TestWorldAndEye(unittest.TestCase):
    def test_world_generation_is_deterministic(self) -> None:
        first = World.generate(7, food_count=12, respawn_pool=20)
        second = World.generate(7, food_count=12, respawn_pool=20)
        self.assertEqual(first, second)
        self.assertEqual(len(first.food), 12)
        self.assertEqual(len(first.respawn), 20)
        self.assertTrue(all(0.0 <= x <= 1.0 and 0.0 <= y <= 1.0 for x, y in first.food))

    def test_world_requires_food(self) -> None:
        with self.assertRaises(ConfigurationError):
            World.generate(1, food_count=0)

    def test_wrap_angle_range(self) -> None:
        self.assertAlmostEqual(wrap_angle(3 * math.pi / 2), -math.pi / 2)
        self.assertAlmostEqual(wrap_angle(-3 * math.pi / 2), math.pi / 2)
        self.assertAlmostEqual(wrap_angle(0.25), 0.25)

    def test_eye_sees_food_straight_ahead_in_middle_cell(self) -> None:
        eye = Eye(cells=4)
        vision = eye.process_vision((0.5, 0.5), 0.0, [(0.6, 0.5)])
        self.assertEqual(vision[0], 0.0)
        self.assertEqual(vision[1], 0.0)
        self.assertAlmostEqual(vision[2], (FOV_RANGE - 0.1) / FOV_RANGE)
        self.assertEqual(vision[3], 0.0)

    def test_eye_ignores_food_behind_or_out_of_range(self) -> None:
        eye = Eye(cells=4)
        self.assertEqual(eye.process_vision((0.5, 0.5), 0.0, [(0.4, 0.5)]), [0.0] * 4)
        self.assertEqual(eye.process_vision((0.5, 0.5), 0.0, [(0.95, 0.5)]), [0.0] * 4)

    def test_eye_follows_rotation(self) -> None:
        eye = Eye(cells=4)
        vision = eye.process_vision((0.5, 0.5), math.pi, [(0.4, 0.5)])
        self.assertGreater(sum(vision), 0.0)


class TestAgentStateMachine(unittest.TestCase):
    def run_agent(self, genome: tuple[float, ...], world: World = FAR_WORLD, max_ticks: int = 600) -> Agent:
        agent = Agent.spawn(genome, TOPOLOGY, world, max_ticks)
        while agent.running:
            agent.tick()
        return agent

    def test_agent_starts_running_at_fixed_configuration(self) -> None:
        first = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 10)
        second = Agent.spawn(motor_genome(1.0), TOPOLOGY, FAR_WORLD, 10)
        self.assertEqual(first.status, Status.RUNNING)
        self.assertEqual((first.x, first.y, first.rotation, first.speed), (second.x, second.y, second.rotation, second.speed))

    def test_forward_flight_leaves_the_arena(self) -> None:
        agent = self.run_agent(motor_genome(speed_bias=5.0))
        self.assertEqual(agent.status, Status.OUT_OF_BOUNDS)
        self.assertGreater(agent.x, 1.0)
        self.assertLess(agent.ticks, 600)

    def test_braking_agent_stalls(self) -> None:
        agent = self.run_agent(motor_genome(speed_bias=-5.0))
        self.assertEqual(agent.status, Status.STALLED)
        self.assertGreaterEqual(agent.ticks, STALL_TICKS)
        self.assertLess(agent.ticks, STALL_TICKS + 20)

    def test_short_run_hits_time_limit(self) -> None:
        agent = self.run_agent(motor_genome(), max_ticks=50)
        self.assertEqual(agent.status, Status.TIME_LIMIT_REACHED)
        self.assertEqual(agent.ticks, 50)

    def test_eating_food_reaches_goal(self) -> None:
        world = World(seed=0, food=((0.56, 0.5),), respawn=((0.05, 0.95),))
        with mock.patch.object(flock_body, "FOOD_GOAL", 1):
            agent = self.run_agent(motor_genome(speed_bias=5.0), world=world)
        self.assertEqual(agent.status, Status.GOAL_REACHED)
        self.assertEqual(agent.food_eaten, 1)
        self.assertEqual(agent.food, [(0.05, 0.95)])

    def test_termination_priority_is_fixed(self) -> None:
        agent = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 100)
        agent.x = 1.5
        agent.slow_ticks = STALL_TICKS
        agent.food_eaten = FOOD_GOAL
        agent.ticks = 100
        self.assertEqual(agent.check_termination(), Status.OUT_OF_BOUNDS)

        agent.x = 0.5
        self.assertEqual(agent.check_termination(), Status.STALLED)

        agent.slow_ticks = 0
        self.assertEqual(agent.check_termination(), Status.GOAL_REACHED)

        agent.food_eaten = 0
        self.assertEqual(agent.check_termination(), Status.TIME_LIMIT_REACHED)

    def test_terminated_agent_does_not_move(self) -> None:
        agent = self.run_agent(motor_genome(), max_ticks=5)
        position = agent.position
        self.assertEqual(agent.tick(), Status.TIME_LIMIT_REACHED)
        self.assertEqual(agent.position, position)

    def test_non_finite_motor_output_raises_numeric_fault(self) -> None:
        agent = Agent.spawn(motor_genome(speed_bias=math.nan), TOPOLOGY, FAR_WORLD, 10)
        with self.assertRaises(NumericFault):
            agent.tick()

    def test_eye_must_match_topology(self) -> None:
        with self.assertRaises(ConfigurationError):
            Agent(genome=motor_genome(), topology=TOPOLOGY, world=FAR_WORLD, max_ticks=10, eye=Eye(cells=3))

    def test_randomized_start_uses_agent_stream(self) -> None:
        first = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 10, rng=agent_rng(5, 0), randomized_start=True)
        again = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 10, rng=agent_rng(5, 0), randomized_start=True)
        other = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 10, rng=agent_rng(5, 1), randomized_start=True)
        self.assertEqual(first.rotation, again.rotation)
        self.assertNotEqual(first.rotation, other.rotation)


class TestFitnessEvaluator(unittest.TestCase):
    def test_time_limit_without_food_scores_full_survival(self) -> None:
        record = evaluate_agent(motor_genome(), TOPOLOGY, 50, FAR_WORLD)
        self.assertEqual(record.status, Status.TIME_LIMIT_REACHED.value)
        self.assertAlmostEqual(record.fitness, SURVIVAL_REWARD)
        self.assertFalse(record.faulted)

    def test_early_exit_scores_less_than_survivor(self) -> None:
        survivor = evaluate_agent(motor_genome(rotation_bias=2.0), TOPOLOGY, 400, FAR_WORLD)
        leaver = evaluate_agent(motor_genome(speed_bias=5.0), TOPOLOGY, 400, FAR_WORLD)
        self.assertEqual(leaver.status, Status.OUT_OF_BOUNDS.value)
        self.assertGreater(survivor.fitness, leaver.fitness)
        self.assertGreaterEqual(leaver.fitness, 0.0)

    def test_score_rewards_food_and_early_goal(self) -> None:
        fed = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 100)
        hungry = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 100)
        fed.ticks = hungry.ticks = 40
        fed.food_eaten, hungry.food_eaten = 3, 2
        self.assertGreater(score_agent(fed), score_agent(hungry))

        fast = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 100)
        slow = Agent.spawn(motor_genome(), TOPOLOGY, FAR_WORLD, 100)
        fast.food_eaten = slow.food_eaten = FOOD_GOAL
        fast.status = slow.status = Status.GOAL_REACHED
        fast.ticks, slow.ticks = 30, 90
        self.assertGreater(score_agent(fast), score_agent(slow))

    def test_numeric_fault_maps_to_worst_fitness(self) -> None:
        record = evaluate_agent(motor_genome(speed_bias=math.nan), TOPOLOGY, 50, FAR_WORLD)
        self.assertEqual(record.fitness, WORST_FITNESS)
        self.assertTrue(record.faulted)
        self.assertEqual(record.status, Status.FAULTED.value)

    def test_adversarial_genomes_always_score_finite(self) -> None:
        world = World.generate(3, food_count=10)
        count = TOPOLOGY.gene_count
        genomes = [
            (1e308,) * count,
            (-1e308,) * count,
            tuple(math.inf if i % 2 else -math.inf for i in range(count)),
            (math.nan,) * count,
            tuple(1e200 * (-1) ** i for i in range(count)),
        ]
        for genome in genomes:
            record = evaluate_agent(genome, TOPOLOGY, 80, world)
            self.assertTrue(math.isfinite(record.fitness), msg=f"{genome[:2]} -> {record.fitness}")

    def test_nan_genome_faults_with_every_activation(self) -> None:
        world = World.generate(3, food_count=10)
        for name in ("tanh", "sigmoid", "hard_tanh"):
            topology = Topology(inputs=4, hidden=(6,), outputs=2, activations=(name, name))
            record = evaluate_agent((math.nan,) * topology.gene_count, topology, 80, world)
            self.assertTrue(record.faulted, msg=name)
            self.assertEqual(record.fitness, WORST_FITNESS)
            self.assertEqual(record.status, Status.FAULTED.value)

    def test_hard_tanh_keeps_nan_instead_of_saturating(self) -> None:
        topology = Topology(inputs=4, hidden=(6,), outputs=2, activations=("hard_tanh", "hard_tanh"))
        output = brain.evaluate((math.nan,) * topology.gene_count, topology, (0.0,) * 4)
        self.assertTrue(all(math.isnan(value) for value in output))

    def test_evaluation_is_reproducible(self) -> None:
        world = World.generate(9, food_count=15)
        genome = create_random(TOPOLOGY, random.Random(1))
        first = evaluate_agent(genome, TOPOLOGY, 120, world, rng=agent_rng(1, 0))
        second = evaluate_agent(genome, TOPOLOGY, 120, world, rng=agent_rng(1, 0))
        self.assertEqual(first, second)

    def test_trace_records_every_tick(self) -> None:
        record = evaluate_agent(motor_genome(), TOPOLOGY, 20, FAR_WORLD, index=3, record_trace=True)
        self.assertEqual(len(record.trace), record.ticks + 1)
        self.assertTrue(all(isinstance(frame, AgentFrame) for frame in record.trace))
        self.assertEqual(record.trace[0].tick, 0)
        self.assertEqual(record.trace[-1].status, Status.TIME_LIMIT_REACHED.value)
        self.assertTrue(all(frame.agent == 3 for frame in record.trace))

    def test_distance_travelled_is_reported(self) -> None:
        parked = evaluate_agent(motor_genome(speed_bias=-5.0), TOPOLOGY, 600, FAR_WORLD)
        leaver = evaluate_agent(motor_genome(speed_bias=5.0), TOPOLOGY, 600, FAR_WORLD, record_trace=True)
        self.assertGreater(leaver.distance, 0.5)
        self.assertLess(parked.distance, leaver.distance)

        distances = [frame.distance for frame in leaver.trace]
        self.assertEqual(distances[0], 0.0)
        self.assertEqual(distances, sorted(distances))
        self.assertAlmostEqual(distances[-1], leaver.distance)

    def test_trace_is_off_by_default(self) -> None:
        record = evaluate_agent(motor_genome(), TOPOLOGY, 20, FAR_WORLD)
        self.assertEqual(record.trace, ())


if __name__ == "__main__":
    unittest.main()
