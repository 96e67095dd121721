"""Train a small float MLP with torch and export it as a Q16.16 model blob.

Trains a 4->16(ReLU)->4 classifier on a synthetic task (which of the four
inputs is largest), quantizes it through neural_fp.tools.convert and checks
that the fixed-point engine agrees with the float model.

Usage:
    uv run --extra torch python tools/export_model.py -o models/argmax.bin
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Torch is an optional dependency -- fail fast with a clear message
try:
    import numpy as np
    import torch
    import torch.nn as nn
    import torch.nn.functional as F
except ImportError:
    print("ERROR: torch required.  Install with: uv sync --extra torch")
    sys.exit(1)

from neural_fp.engine.config import NetworkConfig
from neural_fp.engine.network import Network
from neural_fp.fixed.activations import Activation
from neural_fp.fixed.arith import to_fixed
from neural_fp.tools.convert import encode_float_model

N_INPUTS = 4
N_CLASSES = 4


# ---------------------------------------------------------------------------
# Network definition
# ---------------------------------------------------------------------------

class ArgmaxMLP(nn.Module):
    """Two-layer MLP: 4 -> hidden (ReLU) -> 4."""

    def __init__(self, hidden: int) -> None:
        super().__init__()
        self.fc1 = nn.Linear(N_INPUTS, hidden)
        self.fc2 = nn.Linear(hidden, N_CLASSES)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Forward pass through the MLP."""
        return self.fc2(F.relu(self.fc1(x)))


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------

def make_dataset(n: int, generator: torch.Generator) -> tuple[torch.Tensor, torch.Tensor]:
    """Uniform inputs in [-1, 1); the label is the index of the largest one."""
    x = torch.rand(n, N_INPUTS, generator=generator) * 2 - 1
    return x, x.argmax(dim=1)


def train_model(hidden: int, epochs: int, seed: int) -> ArgmaxMLP:
    """Train the MLP with Adam and return it in eval mode.

    Args:
        hidden: Hidden layer width.
        epochs: Passes over the training set.
        seed: Seed for data and initialization.

    Returns:
        Trained ArgmaxMLP.
    """
    torch.manual_seed(seed)
    gen = torch.Generator().manual_seed(seed)
    x, y = make_dataset(4096, gen)

    model = ArgmaxMLP(hidden)
    optimizer = torch.optim.Adam(model.parameters(), lr=1e-2)
    for epoch in range(epochs):
        perm = torch.randperm(len(x), generator=gen)
        total = 0.0
        for start in range(0, len(x), 128):
            idx = perm[start:start + 128]
            optimizer.zero_grad()
            loss = F.cross_entropy(model(x[idx]), y[idx])
            loss.backward()
            optimizer.step()
            total += loss.item() * len(idx)
        print(f"  Epoch {epoch + 1}/{epochs}: loss {total / len(x):.4f}")

    model.eval()
    return model


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_blob(model: ArgmaxMLP) -> bytes:
    """Quantize the trained layers into a model blob."""
    with torch.no_grad():
        layers = [
            (model.fc1.weight.numpy().astype(np.float32),
             model.fc1.bias.numpy().astype(np.float32), Activation.RELU),
            (model.fc2.weight.numpy().astype(np.float32),
             model.fc2.bias.numpy().astype(np.float32), Activation.LINEAR),
        ]
    return encode_float_model(layers)


def check_agreement(model: ArgmaxMLP, blob: bytes, hidden: int, seed: int) -> None:
    """Compare float and fixed-point predictions on fresh data."""
    gen = torch.Generator().manual_seed(seed + 1)
    x, y = make_dataset(500, gen)
    with torch.no_grad():
        float_preds = model(x).argmax(dim=1).tolist()

    with Network([N_INPUTS, hidden, N_CLASSES], config=NetworkConfig(seed=seed)) as net:
        net.load_model(blob)
        fixed_preds = []
        for row in x.tolist():
            out = net.predict([to_fixed(v) for v in row])
            fixed_preds.append(out.index(max(out)))

    labels = y.tolist()
    n = len(labels)
    float_correct = sum(1 for p, l in zip(float_preds, labels) if p == l)
    fixed_correct = sum(1 for p, l in zip(fixed_preds, labels) if p == l)
    match_count = sum(1 for p, q in zip(float_preds, fixed_preds) if p == q)
    print(f"  Float model accuracy: {float_correct}/{n} ({float_correct / n * 100:.1f}%)")
    print(f"  Q16.16 accuracy:      {fixed_correct}/{n} ({fixed_correct / n * 100:.1f}%)")
    print(f"  Float/Q16.16 agreement: {match_count}/{n} ({match_count / n * 100:.1f}%)")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    """Train, quantize, and export the argmax MLP."""
    parser = argparse.ArgumentParser(description="Train and export a Q16.16 model")
    parser.add_argument("-o", "--output", default="models/argmax.bin",
                        help="Model file to write")
    parser.add_argument("--hidden", type=int, default=16, help="Hidden layer width")
    parser.add_argument("--epochs", type=int, default=10, help="Training epochs")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    args = parser.parse_args()

    print(f"Training argmax MLP ({N_INPUTS} -> {args.hidden} -> {N_CLASSES})...")
    model = train_model(args.hidden, args.epochs, args.seed)

    print("\nQuantizing weights to Q16.16...")
    blob = export_blob(model)
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(blob)
    print(f"  Wrote {out} ({len(blob):,} bytes)")

    print("\nChecking fixed-point agreement...")
    check_agreement(model, blob, args.hidden, args.seed)

    print("\nDone! Next steps:")
    print(f"  uv run neural-fp info {out}")
    print(f"  uv run neural-fp predict {out} --input 0.1,0.9,-0.3,0.2")


if __name__ == "__main__":
    main()
