#!/usr/bin/env python3
"""
Generate a synthetic motion log for a short measurement session.

The device is held still, then trembles slightly, then is carried to a new
spot. Measurements of a known 4m x 3m x 2.5m room are taken in each phase,
so compensation results can be compared against ground truth.

Usage:
    python scripts/generate_synthetic_motion.py [output.json]

Then replay it:
    python -m compensation.replay replay synthetic_motion.json
"""

import json
import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).parent.parent))

from utils.matrix import compose_transform, euler_to_rotation_matrix, matrix_to_row_major  # noqa: E402


# ── Session ──────────────────────────────────────────────────────────

SAMPLE_RATE = 60.0
SEED = 7

# (name, duration s, accel noise, rotation noise, drift accel)
PHASES = [
    ("still", 3.0, 0.002, 0.005, 0.0),
    ("tremor", 3.0, 0.03, 0.08, 0.0),
    ("walking", 2.0, 0.4, 0.6, 0.3),
    ("settled", 3.0, 0.002, 0.005, 0.0),
]

ROOM = (4.0, 3.0, 2.5)  # width, depth, height in meters


# ── Geometry ─────────────────────────────────────────────────────────

def room_measurements(t):
    """Measurement entries of the room taken at time t."""
    w, d, h = ROOM
    floor = [[0.0, 0.0, 0.0], [w, 0.0, 0.0], [w, d, 0.0], [0.0, d, 0.0]]
    corners = [[x, y, z] for x in (0.0, w) for y in (0.0, d) for z in (0.0, h)]
    return [
        {"kind": "distance", "timestamp": t, "points": [[0.0, 0.0, 0.0], [w, 0.0, 0.0]],
         "label": "wall width"},
        {"kind": "area", "timestamp": t + 0.05, "points": floor, "label": "floor"},
        {"kind": "volume", "timestamp": t + 0.10, "points": corners, "label": "room"},
        {"kind": "angle", "timestamp": t + 0.15,
         "points": [[0.0, 0.0, 0.0], [w, 0.0, 0.0], [0.0, d, 0.0]], "label": "corner"},
        {"kind": "distance", "timestamp": t + 0.20, "value": 2.0, "label": "lidar range"},
    ]


# ── Generation ───────────────────────────────────────────────────────

def generate(rng):
    readings = []
    frames = []
    measurements = []

    t = 0.0
    position = np.array([w / 2 for w in ROOM[:2]] + [1.4])
    velocity = np.zeros(3)
    attitude = np.zeros(3)

    for name, duration, accel_noise, rotation_noise, drift in PHASES:
        steps = int(duration * SAMPLE_RATE)
        for _ in range(steps):
            dt = 1.0 / SAMPLE_RATE
            accel = rng.normal(0.0, accel_noise, 3) + np.array([drift, 0.0, 0.0])
            rotation = rng.normal(0.0, rotation_noise, 3)
            attitude = attitude + rotation * dt
            velocity = velocity + accel * dt
            position = position + velocity * dt

            rotation_matrix = euler_to_rotation_matrix(*attitude)
            gravity = rotation_matrix.T @ np.array([0.0, -1.0, 0.0])

            readings.append({
                "timestamp": round(t, 6),
                "attitudeRoll": float(attitude[0]),
                "attitudePitch": float(attitude[1]),
                "attitudeYaw": float(attitude[2]),
                "rotationRateX": float(rotation[0]),
                "rotationRateY": float(rotation[1]),
                "rotationRateZ": float(rotation[2]),
                "userAccelX": float(accel[0]),
                "userAccelY": float(accel[1]),
                "userAccelZ": float(accel[2]),
                "gravityX": float(gravity[0]),
                "gravityY": float(gravity[1]),
                "gravityZ": float(gravity[2]),
            })

            # Camera frames at 10 Hz
            if len(readings) % 6 == 0:
                frames.append({
                    "timestamp": round(t, 6),
                    "transform_matrix": matrix_to_row_major(compose_transform(rotation_matrix, position)),
                    "tracking_state": "limited" if name == "walking" else "normal",
                })
            t += 1.0 / SAMPLE_RATE

        # Measure near the end of each phase
        measurements.extend(room_measurements(round(t - 0.5, 6)))

        if name == "walking":
            velocity = np.zeros(3)

    return readings, measurements, frames


def main():
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("synthetic_motion.json")
    rng = np.random.default_rng(SEED)

    readings, measurements, frames = generate(rng)
    log = {
        "session_id": "synthetic-room-session",
        "sample_rate": SAMPLE_RATE,
        "readings": readings,
        "measurements": measurements,
        "frames": frames,
    }

    with open(out, "w") as f:
        json.dump(log, f, indent=2)

    duration = readings[-1]["timestamp"] - readings[0]["timestamp"]
    print(f"Synthetic motion log: {out}")
    print(f"  {len(readings)} readings over {duration:.1f}s at {SAMPLE_RATE:.0f}Hz")
    print(f"  {len(measurements)} measurements, {len(frames)} frames")
    print(f"  Phases: {', '.join(p[0] for p in PHASES)}")
    print(f"  Room: {ROOM[0]}m x {ROOM[1]}m x {ROOM[2]}m")
    print(f"\nReplay:  python -m compensation.replay replay {out}")


if __name__ == "__main__":
    main()
