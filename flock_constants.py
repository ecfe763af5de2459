import math

SEED = 42
POPULATION_SIZE = 40
ELITE_COUNT = 2
GENERATIONS = 30
MUTATION_RATE = 0.1
MUTATION_STRENGTH = 0.5
SELECTION_METHOD = "roulette"
CROSSOVER_METHOD = "uniform"
TOURNAMENT_SIZE = 3

EYE_CELLS = 4
HIDDEN_LAYERS = (6,)
OUTPUT_SIZE = 2
HIDDEN_ACTIVATION = "tanh"
OUTPUT_ACTIVATION = "tanh"

FOV_RANGE = 0.35
FOV_ANGLE = math.pi + math.pi / 4

MAX_TICKS = 600
FOOD_COUNT = 30
FOOD_RESPAWN_POOL = 256
FOOD_EAT_RADIUS = 0.02
FOOD_GOAL = 12

START_POSITION = (0.5, 0.5)
START_SPEED = 0.002
SPEED_MIN = 0.0
SPEED_MAX = 0.005
SPEED_ACCEL = 0.0004
ROTATION_ACCEL = math.pi / 10
TIMESTEP = 1.0

STALL_SPEED = 0.0002
STALL_TICKS = 60

FOOD_REWARD = 1.0
SURVIVAL_REWARD = 0.5
GOAL_BONUS = 1.0
WORST_FITNESS = -1.0

VARY_WORLD_PER_GENERATION = False
RANDOMIZED_STARTS = False
WORKERS = 1
