"""
architecture.py
===============
PyTorch convolutional network for image severity classification.

Architecture:

  Input  →  (batch, 224, 224, 3)  [channels-last RGB, values in [0, 1]]
         ↓
  permute → (batch, 3, 224, 224)
         ↓
  Conv2D Block × 4               [local texture / lesion features]
    Conv2d(in, out, 3) → BatchNorm2d → ReLU → MaxPool2d(2)
    Channels: 3 → 16 → 32 → 64 → 128
         ↓
  Global Average Pool            [spatial aggregation]
         ↓
  Dense 128 → 64 → 4             [classification head]
    ReLU → Dropout(0.3) between layers
         ↓
  Softmax                        [probabilities over 4 severity classes]

Classes (index → label):
  0 → Extremely Mild
  1 → Mild
  2 → Moderate
  3 → Severe
"""

from __future__ import annotations

import torch
import torch.nn as nn
import torch.nn.functional as F

# Ordered severity labels; index must stay fixed (used in predictor.py)
SEVERITY_LABELS = (
    "Extremely Mild",
    "Mild",
    "Moderate",
    "Severe",
)

INPUT_SIZE = 224


class ConvBlock(nn.Module):
    """Conv2d → BatchNorm → ReLU → MaxPool."""

    def __init__(self, in_channels: int, out_channels: int, kernel: int = 3):
        super().__init__()
        pad = (kernel - 1) // 2
        self.conv = nn.Conv2d(in_channels, out_channels, kernel_size=kernel, padding=pad)
        self.bn   = nn.BatchNorm2d(out_channels)
        self.pool = nn.MaxPool2d(2)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.pool(F.relu(self.bn(self.conv(x))))


class SeverityClassifier(nn.Module):
    """
    Small CNN classifier for severity grading.

    Input  : (batch, 224, 224, 3)  — channels-last, normalised to [0, 1]
    Output : (batch, 4)            — softmax over SEVERITY_LABELS
    """

    def __init__(self, num_classes: int = len(SEVERITY_LABELS), dropout: float = 0.3):
        super().__init__()

        # ── Convolutional front-end ──────────────────────────────────────────
        self.conv_blocks = nn.Sequential(
            ConvBlock(3,   16),   # (batch, 16,  112, 112)
            ConvBlock(16,  32),   # (batch, 32,  56,  56)
            ConvBlock(32,  64),   # (batch, 64,  28,  28)
            ConvBlock(64, 128),   # (batch, 128, 14,  14)
        )
        self.pool = nn.AdaptiveAvgPool2d(1)

        # ── Classification head ──────────────────────────────────────────────
        self.dense1  = nn.Linear(128, 64)
        self.dropout = nn.Dropout(dropout)
        self.dense2  = nn.Linear(64, num_classes)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        # x: (batch, H, W, C) → conv layers expect (batch, C, H, W)
        x = x.permute(0, 3, 1, 2)
        features = self.conv_blocks(x)
        pooled = self.pool(features).flatten(1)   # (batch, 128)

        out = F.relu(self.dense1(pooled))
        out = self.dropout(out)
        logits = self.dense2(out)                 # (batch, 4)
        return F.softmax(logits, dim=-1)
