from __future__ import annotations

import cv2
import numpy as np
import torch
import torch.nn.functional as f
import torchvision.models as models
from torchvision.models import ResNet18_Weights

from .exceptions import EmbeddingExtractionFailed, FaceEngineError
from .types import Embedding, FaceBox

DEVICE = "cuda" if torch.cuda.is_available() else "cpu"
INPUT_SIZE = 224


def crop_face(frame: np.ndarray, box: FaceBox, padding: float = 0.15) -> np.ndarray:
    h, w = frame.shape[:2]
    x1, y1, x2, y2 = box.to_pixels(w, h, padding=padding)
    if x2 <= x1 or y2 <= y1:
        return np.empty((0, 0, 3), dtype=frame.dtype)
    return frame[y1:y2, x1:x2]


class ResNetFeatureExtractor:
    """Turns a padded face crop into an L2-normalised ResNet-18 feature vector."""

    def __init__(self, device: str = DEVICE, crop_padding: float = 0.15):
        self.device = torch.device(device)
        self.crop_padding = crop_padding

        try:
            weights = ResNet18_Weights.DEFAULT
            backbone = models.resnet18(weights=weights)
            backbone.fc = torch.nn.Identity()
            self.embedder = backbone.eval().to(self.device)

            self.mean = torch.tensor([0.485, 0.456, 0.406], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
            self.std = torch.tensor([0.229, 0.224, 0.225], dtype=torch.float32).view(1, 3, 1, 1).to(self.device)
            self.clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
            self.mask = self._build_mask()
        except Exception as exc:
            raise FaceEngineError(f"Failed to initialize embedding model: {exc}") from exc

    def extract(self, frame_bgr: np.ndarray, box: FaceBox) -> Embedding:
        crop = crop_face(frame_bgr, box, padding=self.crop_padding)
        if crop.size == 0:
            raise EmbeddingExtractionFailed("Face crop is empty.")

        try:
            rgb = cv2.cvtColor(crop, cv2.COLOR_BGR2RGB)
            tensor = torch.from_numpy(self._preprocess_crop(rgb)).permute(2, 0, 1).float() / 255.0
            batch = tensor.unsqueeze(0).to(self.device)
            batch = (batch - self.mean) / self.std
            with torch.inference_mode():
                raw = self.embedder(batch)
                normed = f.normalize(raw, p=2, dim=1)
            return normed[0].detach().cpu().numpy().astype(np.float32)
        except Exception as exc:
            raise EmbeddingExtractionFailed(f"Embedding generation failed: {exc}") from exc

    @staticmethod
    def _build_mask() -> np.ndarray:
        center = INPUT_SIZE // 2
        mask = np.zeros((INPUT_SIZE, INPUT_SIZE), dtype=np.float32)
        cv2.ellipse(mask, (center, center), (84, 100), 0, 0, 360, 1.0, -1)
        mask = cv2.GaussianBlur(mask, (0, 0), sigmaX=6.0, sigmaY=6.0)
        return mask[..., None]

    def _preprocess_crop(self, crop_rgb: np.ndarray) -> np.ndarray:
        if crop_rgb.shape[0] < INPUT_SIZE or crop_rgb.shape[1] < INPUT_SIZE:
            resized = cv2.resize(crop_rgb, (INPUT_SIZE, INPUT_SIZE), interpolation=cv2.INTER_CUBIC)
        else:
            resized = cv2.resize(crop_rgb, (INPUT_SIZE, INPUT_SIZE), interpolation=cv2.INTER_AREA)

        # Even out webcam lighting, then fade the padded border toward the mean colour.
        ycrcb = cv2.cvtColor(resized, cv2.COLOR_RGB2YCrCb)
        y_channel, cr_channel, cb_channel = cv2.split(ycrcb)
        y_channel = self.clahe.apply(y_channel)
        balanced = cv2.cvtColor(
            cv2.merge([y_channel, cr_channel, cb_channel]),
            cv2.COLOR_YCrCb2RGB,
        ).astype(np.float32)

        mean_color = balanced.mean(axis=(0, 1), keepdims=True)
        focused = (balanced * self.mask) + (mean_color * (1.0 - self.mask))
        return np.clip(focused, 0.0, 255.0).astype(np.uint8)
