from enum import Enum, IntEnum


class PodState(Enum):
    INITIALIZATION = 0
    HEALTH_CHECK   = 1
    READY          = 2
    LEVITATION     = 3
    PROPULSION     = 4
    COASTING       = 5
    BRAKING        = 6
    STOPPED        = 7

    def to_name(self) -> str:
        return {0: "Initialization", 1: "Health Check", 2: "Ready", 3: "Levitation",
                4: "Propulsion", 5: "Coasting", 6: "Braking", 7: "Stopped"}[self.value]


class PacketType(IntEnum):
    GYROSCOPE     = 1
    ACCELEROMETER = 2
    GAP_HEIGHT    = 3
    TEMPERATURE   = 4
    HALL_EFFECT   = 5
    BATTERY       = 6
