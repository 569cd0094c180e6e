from .recognizer import RecognitionEvent, RecognitionEventKind, RecognizerAdapter, SpeechRecognizer
from .synthesizer import SpeechSynthesizer, SynthesisEvent, SynthesisEventKind, SynthesizerAdapter

__all__ = [
    "RecognitionEvent",
    "RecognitionEventKind",
    "RecognizerAdapter",
    "SpeechRecognizer",
    "SpeechSynthesizer",
    "SynthesisEvent",
    "SynthesisEventKind",
    "SynthesizerAdapter",
]
