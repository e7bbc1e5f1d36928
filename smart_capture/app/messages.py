from typing import Dict, Optional

STATE_MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "initializing": "Getting ready...",
        "no_face": "Place your face in the center",
        "face_too_small": "Move a little closer",
        "face_too_large": "Move back a little",
        "face_not_centered": "Center your face",
        "poor_lighting": "Find better lighting",
        "multiple_faces": "Only one face at a time",
        "ready": "Perfect! Hold still",
        "countdown": "Hold still, taking the photo in {n}",
        "capturing": "Capturing...",
        "error": "Something went wrong. Please try again",
    },
    "pt-BR": {
        "initializing": "Carregando...",
        "no_face": "Posicione seu rosto no centro",
        "face_too_small": "Aproxime-se um pouco",
        "face_too_large": "Afaste-se um pouco",
        "face_not_centered": "Centralize seu rosto",
        "poor_lighting": "Melhore a iluminação",
        "multiple_faces": "Apenas um rosto por vez",
        "ready": "Perfeito! Mantenha a posição",
        "countdown": "Mantenha a posição, foto em {n}",
        "capturing": "Capturando...",
        "error": "Erro na detecção. Tente novamente",
    },
}

CHALLENGE_MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "turn_left": "Turn your head to the left",
        "turn_right": "Turn your head to the right",
        "blink": "Blink your eyes",
        "neutral": "Look straight at the camera",
        "succeeded": "Verification complete!",
        "failed": "Liveness check failed. Please try again",
        "timeout": "Time is up. Please try again",
    },
    "pt-BR": {
        "turn_left": "Vire a cabeça para a esquerda",
        "turn_right": "Vire a cabeça para a direita",
        "blink": "Pisque os olhos",
        "neutral": "Olhe para a câmera",
        "succeeded": "Verificação concluída!",
        "failed": "Verificação de vivacidade falhou. Tente novamente",
        "timeout": "Tempo esgotado. Tente novamente",
    },
}


def state_message(state: str, locale: str = "en", countdown: Optional[int] = None) -> str:
    table = STATE_MESSAGES.get(locale, STATE_MESSAGES["en"])
    text = table[str(getattr(state, "value", state))]
    return text.format(n=countdown if countdown is not None else "").rstrip()


def challenge_message(key: str, locale: str = "en") -> str:
    table = CHALLENGE_MESSAGES.get(locale, CHALLENGE_MESSAGES["en"])
    return table[str(getattr(key, "value", key))]
