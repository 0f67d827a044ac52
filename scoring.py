# src/scoring.py
"""Signal scoring: turn a PredictionInput into a buy/sell/hold PredictionResult.

Three interchangeable models share one contract:

- ``TechnicalModel`` runs a battery of six rule checks (RSI, MACD, trend, volume,
  sentiment, 5-sample momentum) driven by a ``SignalRules`` table.
- ``FeatureModel`` normalises five features, weights them with a
  ``FeatureWeights`` vector and squashes the score through a sigmoid.
- ``EnsembleModel`` runs both and blends them 60/40 (technical first), scaling
  the blended confidence up when they make the same call and down when not.

Every model returns confidence clamped to [30, 95] and integer probabilities with
``probability_down == 100 - probability_up``. The only nondeterminism is the
technical model's hold-band probability, drawn from an injectable
``random.Random``.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from models import ModelInfo, PredictionInput, PredictionResult

logger = logging.getLogger(__name__)

DEFAULT_PRICE = 50_000.0  # used when the caller sends no price history
MIN_CONFIDENCE = 30
MAX_CONFIDENCE = 95


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_confidence(value: float) -> int:
    return round_half_up(min(float(MAX_CONFIDENCE), max(float(MIN_CONFIDENCE), value)))


def split_probability(probability_up: float) -> Tuple[int, int]:
    """Round probability-up once, then derive the complement from the rounded value."""
    up = round_half_up(min(100.0, max(0.0, probability_up)))
    return up, 100 - up


def current_price(inp: PredictionInput) -> float:
    if inp.price_history and inp.price_history[-1]:
        return float(inp.price_history[-1])
    return DEFAULT_PRICE


# --- Technical rule battery ---

@dataclass(frozen=True)
class SignalRules:
    base_confidence: float = 40.0

    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    rsi_low: float = 40.0
    rsi_high: float = 60.0
    rsi_extreme_signals: int = 3
    rsi_extreme_confidence: float = 20.0
    rsi_mild_signals: int = 1
    rsi_mild_confidence: float = 10.0

    macd_threshold: float = 0.001
    macd_signals: int = 2
    macd_confidence: float = 15.0

    trend_signals: int = 2
    trend_confidence: float = 15.0

    volume_high: float = 2e9
    volume_high_confidence: float = 15.0
    volume_normal: float = 1e9
    volume_normal_confidence: float = 10.0
    volume_low_penalty: float = 5.0

    sentiment_signals: int = 1
    sentiment_confidence: float = 8.0

    momentum_window: int = 5
    momentum_threshold: float = 0.02
    momentum_signals: int = 1
    momentum_confidence: float = 8.0

    # decision: one side must lead by more than signal_margin with confidence above min_confidence
    signal_margin: int = 2
    min_confidence: float = 70.0


@dataclass
class SignalTally:
    confidence: float
    bullish: int = 0
    bearish: int = 0
    reasons: List[str] = field(default_factory=list)

    def bull(self, signals: int, confidence: float, reason: str) -> None:
        self.bullish += signals
        self.confidence += confidence
        self.reasons.append(reason)

    def bear(self, signals: int, confidence: float, reason: str) -> None:
        self.bearish += signals
        self.confidence += confidence
        self.reasons.append(reason)

    def note(self, confidence: float, reason: str) -> None:
        self.confidence += confidence
        self.reasons.append(reason)


def evaluate_signals(inp: PredictionInput, rules: SignalRules) -> SignalTally:
    """Run the six rule checks and accumulate bullish/bearish counts and confidence."""
    tally = SignalTally(confidence=rules.base_confidence)

    rsi = inp.rsi
    if rsi < rules.rsi_oversold:
        tally.bull(rules.rsi_extreme_signals, rules.rsi_extreme_confidence,
                   f"RSI oversold ({rsi:.1f}) - strong buy signal")
    elif rsi > rules.rsi_overbought:
        tally.bear(rules.rsi_extreme_signals, rules.rsi_extreme_confidence,
                   f"RSI overbought ({rsi:.1f}) - strong sell signal")
    elif rsi < rules.rsi_low:
        tally.bull(rules.rsi_mild_signals, rules.rsi_mild_confidence,
                   f"RSI low ({rsi:.1f}) - leaning buy")
    elif rsi > rules.rsi_high:
        tally.bear(rules.rsi_mild_signals, rules.rsi_mild_confidence,
                   f"RSI high ({rsi:.1f}) - leaning sell")

    if inp.macd > rules.macd_threshold:
        tally.bull(rules.macd_signals, rules.macd_confidence,
                   f"MACD bullish cross ({inp.macd:.4f}) - upward momentum")
    elif inp.macd < -rules.macd_threshold:
        tally.bear(rules.macd_signals, rules.macd_confidence,
                   f"MACD bearish cross ({inp.macd:.4f}) - downward momentum")

    if inp.trend == "up":
        tally.bull(rules.trend_signals, rules.trend_confidence, "Price trending up - follow the trend long")
    elif inp.trend == "down":
        tally.bear(rules.trend_signals, rules.trend_confidence, "Price trending down - follow the trend short")
    else:
        tally.reasons.append("Price moving sideways - waiting for a breakout")

    if inp.volume > rules.volume_high:
        tally.note(rules.volume_high_confidence, "Volume expanding - signal reliability high")
    elif inp.volume > rules.volume_normal:
        tally.note(rules.volume_normal_confidence, "Volume normal - signal valid")
    else:
        tally.note(-rules.volume_low_penalty, "Volume thin - signal reliability reduced")

    if inp.sentiment == "positive":
        tally.bull(rules.sentiment_signals, rules.sentiment_confidence, "Market sentiment positive")
    elif inp.sentiment == "negative":
        tally.bear(rules.sentiment_signals, rules.sentiment_confidence, "Market sentiment negative")

    window = rules.momentum_window
    if len(inp.price_history) >= window:
        recent = inp.price_history[-window:]
        if recent[0]:
            change = (recent[-1] - recent[0]) / recent[0]
            if change > rules.momentum_threshold:
                tally.bull(rules.momentum_signals, rules.momentum_confidence,
                           f"Up {change * 100:.1f}% recently - momentum continuing")
            elif change < -rules.momentum_threshold:
                tally.bear(rules.momentum_signals, rules.momentum_confidence,
                           f"Down {abs(change) * 100:.1f}% recently - decline continuing")

    return tally


class TechnicalModel:
    name = "technical"
    model_used = "Technical Analysis Model v2.0"

    def __init__(self, rules: Optional[SignalRules] = None, rng: Optional[random.Random] = None):
        self.rules = rules or SignalRules()
        self.rng = rng or random.Random()

    def predict(self, inp: PredictionInput) -> PredictionResult:
        rules = self.rules
        tally = evaluate_signals(inp, rules)
        confidence = tally.confidence

        if tally.bullish > tally.bearish + rules.signal_margin and confidence > rules.min_confidence:
            prediction = "buy"
            probability_up = min(90.0, 55.0 + tally.bullish * 6.0)
            risk_level = "low" if confidence > 85 else "medium"
        elif tally.bearish > tally.bullish + rules.signal_margin and confidence > rules.min_confidence:
            prediction = "sell"
            probability_up = 100.0 - min(90.0, 55.0 + tally.bearish * 6.0)
            risk_level = "low" if confidence > 85 else "medium"
        else:
            # Neutral band: no calibrated estimate, just a draw near 50.
            prediction = "hold"
            probability_up = 45.0 + self.rng.random() * 10.0
            risk_level = "medium"

        if prediction != "hold":
            probability_up = min(90.0, max(10.0, probability_up))

        price = current_price(inp)
        volatility = min(0.05, max(0.01, confidence / 2000.0))
        if prediction == "buy":
            target_price = price * (1 + volatility * (confidence / 100.0))
            stop_loss = price * (1 - volatility * 0.6)
        elif prediction == "sell":
            target_price = price * (1 - volatility * (confidence / 100.0))
            stop_loss = price * (1 + volatility * 0.6)
        else:
            target_price = price
            stop_loss = price * (1 - volatility * 0.5)

        up, down = split_probability(probability_up)
        return PredictionResult(
            symbol=inp.symbol,
            prediction=prediction,
            confidence=clamp_confidence(confidence),
            probability_up=up,
            probability_down=down,
            target_price=target_price,
            stop_loss=stop_loss,
            reasoning="; ".join(tally.reasons),
            technical_analysis=(
                f"Technical read - bullish signals: {tally.bullish}, bearish signals: {tally.bearish}, "
                f"total strength: {tally.bullish + tally.bearish}"
            ),
            risk_level=risk_level,
            model_used=self.model_used,
        )


# --- Feature-weighted model ---

@dataclass(frozen=True)
class FeatureWeights:
    rsi: float = 0.35
    macd: float = 0.25
    volume: float = 0.15
    trend: float = 0.15
    sentiment: float = 0.10


_DIRECTION = {"up": 1.0, "down": -1.0, "positive": 1.0, "negative": -1.0}


def extract_features(inp: PredictionInput) -> Dict[str, float]:
    return {
        "rsi": (inp.rsi - 50.0) / 50.0,
        "macd": math.tanh(inp.macd * 1000.0),
        "volume": math.log(max(inp.volume, 0.0) / 1e9 + 1.0),
        "trend": _DIRECTION.get(inp.trend, 0.0),
        "sentiment": _DIRECTION.get(inp.sentiment, 0.0),
    }


def sigmoid(x: float) -> float:
    if x < 0:
        z = math.exp(x)
        return z / (1.0 + z)
    return 1.0 / (1.0 + math.exp(-x))


class FeatureModel:
    name = "ml"
    model_used = "Machine Learning Model v1.5"

    def __init__(self, weights: Optional[FeatureWeights] = None):
        self.weights = weights or FeatureWeights()

    def score(self, inp: PredictionInput) -> float:
        features = extract_features(inp)
        w = self.weights
        return (
            features["rsi"] * w.rsi
            + features["macd"] * w.macd
            + features["volume"] * w.volume
            + features["trend"] * w.trend
            + features["sentiment"] * w.sentiment
        )

    def predict(self, inp: PredictionInput) -> PredictionResult:
        score = self.score(inp)
        probability_up = sigmoid(score * 3.0) * 100.0
        probability_down = 100.0 - probability_up
        confidence = min(95.0, 60.0 + abs(score) * 30.0)

        if probability_up > 65 and confidence > 70:
            prediction = "buy"
        elif probability_down > 65 and confidence > 70:
            prediction = "sell"
        else:
            prediction = "hold"

        price = current_price(inp)
        volatility = 0.02 + abs(score) * 0.01
        if prediction == "buy":
            target_price, stop_loss = price * (1 + volatility), price * 0.97
        elif prediction == "sell":
            target_price, stop_loss = price * (1 - volatility), price * 1.03
        else:
            target_price, stop_loss = price, price * 0.98

        if confidence > 80:
            risk_level = "low"
        elif confidence > 60:
            risk_level = "medium"
        else:
            risk_level = "high"

        w = self.weights
        up, down = split_probability(probability_up)
        return PredictionResult(
            symbol=inp.symbol,
            prediction=prediction,
            confidence=clamp_confidence(confidence),
            probability_up=up,
            probability_down=down,
            target_price=target_price,
            stop_loss=stop_loss,
            reasoning=f"ML model score: {score:.3f}, feature weighting complete",
            technical_analysis=(
                f"ML features: RSI weight {w.rsi}, MACD weight {w.macd}, volume weight {w.volume}"
            ),
            risk_level=risk_level,
            model_used=self.model_used,
        )


# --- Ensemble ---

def blend(
    technical: PredictionResult,
    ml: PredictionResult,
    technical_weight: float = 0.6,
) -> PredictionResult:
    """Combine two sub-model results into an ensemble result.

    Probability-up and confidence are weighted averages; confidence is then
    scaled by 1.1 when both models made the same call and by 0.9 otherwise.
    Target and stop-loss are plain means.
    """
    ml_weight = 1.0 - technical_weight
    probability_up = technical.probability_up * technical_weight + ml.probability_up * ml_weight
    confidence = technical.confidence * technical_weight + ml.confidence * ml_weight

    agree = technical.prediction == ml.prediction
    final_confidence = confidence * (1.1 if agree else 0.9)

    if probability_up > 65 and final_confidence > 70:
        prediction = "buy"
    elif probability_up < 35 and final_confidence > 70:
        prediction = "sell"
    else:
        prediction = "hold"

    if final_confidence > 85:
        risk_level = "low"
    elif final_confidence > 65:
        risk_level = "medium"
    else:
        risk_level = "high"

    up, down = split_probability(probability_up)
    return PredictionResult(
        symbol=technical.symbol,
        prediction=prediction,
        confidence=clamp_confidence(min(95.0, final_confidence)),
        probability_up=up,
        probability_down=down,
        target_price=(technical.target_price + ml.target_price) / 2,
        stop_loss=(technical.stop_loss + ml.stop_loss) / 2,
        reasoning=(
            f"Ensemble - technical: {technical.prediction}, ML: {ml.prediction}, "
            f"agreement: {'high' if agree else 'low'}"
        ),
        technical_analysis=(
            f"Model fusion: technical weight {technical_weight:.1f}, ML weight {ml_weight:.1f}, "
            f"models agree: {agree}"
        ),
        risk_level=risk_level,
        model_used=EnsembleModel.model_used,
    )


class EnsembleModel:
    name = "ensemble"
    model_used = "Ensemble Model v2.0 (Technical + ML)"

    def __init__(
        self,
        technical: Optional[TechnicalModel] = None,
        ml: Optional[FeatureModel] = None,
        technical_weight: float = 0.6,
    ):
        self.technical = technical or TechnicalModel()
        self.ml = ml or FeatureModel()
        self.technical_weight = technical_weight

    def predict(self, inp: PredictionInput) -> PredictionResult:
        return blend(self.technical.predict(inp), self.ml.predict(inp), self.technical_weight)


MODEL_CATALOGUE = [
    ModelInfo(name="technical", description="Technical model - RSI, MACD and related indicators",
              accuracy="75%", speed="fast"),
    ModelInfo(name="ml", description="Machine-learning model - engineered features and weighted scoring",
              accuracy="78%", speed="medium"),
    ModelInfo(name="ensemble", description="Ensemble model - blends the technical and ML predictions",
              accuracy="82%", speed="medium"),
]


class PredictionEngine:
    """Dispatch a PredictionInput to one of the three models by name."""

    default_model = "ensemble"

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        rules: Optional[SignalRules] = None,
        weights: Optional[FeatureWeights] = None,
    ):
        self.technical = TechnicalModel(rules=rules, rng=rng)
        self.ml = FeatureModel(weights=weights)
        self.ensemble = EnsembleModel(self.technical, self.ml)
        self._models = {
            "technical": self.technical,
            "ml": self.ml,
            "ensemble": self.ensemble,
        }

    @property
    def model_names(self) -> List[str]:
        return list(self._models)

    def predict(self, inp: PredictionInput, model: str = "ensemble") -> PredictionResult:
        # Unknown selectors fall back to the ensemble.
        scorer = self._models.get(model, self.ensemble)
        result = scorer.predict(inp)
        logger.debug(
            "%s %s -> %s (confidence=%d, p_up=%d)",
            scorer.name, inp.symbol, result.prediction, result.confidence, result.probability_up,
        )
        return result

    def describe_models(self) -> List[ModelInfo]:
        return list(MODEL_CATALOGUE)
