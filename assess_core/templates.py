# assess_core/templates.py
from __future__ import annotations
import random
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from .types import Question
from .config import SCALE_MIN, SCALE_MAX

# Parameterized question templates used as the offline generator.

_MAX_DRAWS = 12


def _shuffle_choices(rng: random.Random, correct: str, wrong: List[str]) -> Tuple[List[str], int]:
    seen, opts = {correct}, [correct]
    for w in wrong:
        if w not in seen:
            seen.add(w); opts.append(w)
    rng.shuffle(opts)
    return opts, opts.index(correct)


def _ll_number(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    bits = 2 + d
    n = rng.randint(1, 2 ** bits - 1)
    if d >= 4:
        form, literal = "hexadecimal", f"0x{n:X}"
    else:
        form, literal = "binary", f"0b{n:0{bits}b}"
    prompt = f"What is the decimal value of the {form} number {literal}?"
    if qtype == "multiple_choice":
        choices, idx = _shuffle_choices(rng, str(n), [str(n + 1), str(n + 2 if n < 2 else n - 1), str(n * 2)])
        return {"type": qtype, "prompt": prompt, "choices": choices, "correct_index": idx}
    return {"type": "one_liner", "prompt": prompt, "expected_answer": str(n)}


def _ll_bitwise(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    a, b = rng.randint(1, 255), rng.randint(1, 255)
    op, sym = rng.choice([("and", "&"), ("or", "|"), ("xor", "^")])
    val = {"and": a & b, "or": a | b, "xor": a ^ b}[op]
    if d >= 5:
        shift = rng.randint(1, 3)
        val = (val << shift) & 0xFF
        code = f"byte a = {a};\nbyte b = {b};\nbyte r = (a {sym} b) << {shift};\nSerial.println(r);"
    else:
        code = f"byte a = {a};\nbyte b = {b};\nSerial.println(a {sym} b);"
    return {"type": "trace", "prompt": "What does this print?", "code_to_trace": code, "trace_answer": str(val)}


def _cf_loop(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    start, stop = rng.randint(0, 3), rng.randint(6, 10 + 2 * d)
    step = rng.randint(1, 1 + d // 2)
    values = list(range(start, stop, step))
    if d >= 3:
        k = rng.randint(2, 4)
        values = [v for v in values if v % k != 0]
        body = f"  if (i % {k} == 0) continue;\n  total += i;"
    else:
        body = "  total += i;"
    code = f"int total = 0;\nfor (int i = {start}; i < {stop}; i += {step}) {{\n{body}\n}}\nSerial.println(total);"
    total = sum(values)
    if qtype == "multiple_choice":
        choices, idx = _shuffle_choices(rng, str(total), [str(total + step), str(max(0, total - step)), str(total + stop)])
        return {"type": qtype, "prompt": "What does this print?\n```cpp\n" + code + "\n```",
                "choices": choices, "correct_index": idx}
    return {"type": "trace", "prompt": "What does this print?", "code_to_trace": code, "trace_answer": str(total)}


def _cf_blink(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    pin, period = rng.choice([9, 10, 11, 12, 13]), rng.choice([200, 250, 400, 500, 750, 1000])
    reqs = [f"pinMode {pin} OUTPUT in setup", f"compare millis() - last >= {period}", f"toggle and digitalWrite {pin}"]
    if d >= 4:
        reqs.append("read a button on pin 2 with INPUT_PULLUP and pause blinking while it is held")
    return {"type": "code", "prompt": f"Blink the LED on pin {pin} every {period} ms without delay()."
            + (" Pause while the button on pin 2 is held." if d >= 4 else ""),
            "starter_code": "unsigned long last = 0;\n\nvoid setup() {\n}\n\nvoid loop() {\n}", "requirements": reqs}


def _hw_pwm(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    pct = rng.choice([10, 20, 25, 40, 50, 60, 75, 80, 90])
    val = round(pct * 255 / 100)
    prompt = f"Which analogWrite value gives about {pct}% duty cycle?"
    if qtype == "one_liner" or d >= 4:
        return {"type": "one_liner", "prompt": prompt + " Answer with the number.", "expected_answer": str(val)}
    choices, idx = _shuffle_choices(rng, str(val), [str(pct), str(min(1023, round(pct * 1023 / 100))), str(255 - val)])
    return {"type": "multiple_choice", "prompt": prompt, "choices": choices, "correct_index": idx}


def _hw_code(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    led, btn = rng.choice([9, 10, 11, 13]), rng.choice([2, 3, 4])
    reqs = [f"pinMode {btn} INPUT_PULLUP", f"pinMode {led} OUTPUT", f"digitalRead {btn} LOW means pressed",
            f"digitalWrite {led}"]
    if d >= 3:
        reqs.append("debounce with millis() over 50 ms")
    return {"type": "code", "prompt": f"Light the LED on pin {led} while the button on pin {btn} (to GND) is pressed."
            + (" Debounce the button." if d >= 3 else ""),
            "starter_code": "void setup() {\n}\n\nvoid loop() {\n}", "requirements": reqs}


def _cr_expr(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    a, b, c = rng.randint(2, 9), rng.randint(2, 9), rng.randint(2, 5)
    if d <= 2:
        code, val = f"int x = {a} + {b} * {c};\nSerial.println(x);", a + b * c
    elif d == 3:
        code, val = f"int x = ({a} * {b}) / {c};\nSerial.println(x);", (a * b) // c
    else:
        code = f"int x = {a};\nfor (int i = 0; i < {c}; i++) {{\n  x = x * 2 % {b + 7};\n}}\nSerial.println(x);"
        val = a
        for _ in range(c):
            val = val * 2 % (b + 7)
    if qtype == "multiple_choice":
        choices, idx = _shuffle_choices(rng, str(val), [str(val + 1), str(val + c), str(abs(val - b) + 2)])
        return {"type": qtype, "prompt": "What does this print?\n```cpp\n" + code + "\n```",
                "choices": choices, "correct_index": idx}
    return {"type": "trace", "prompt": "What does this print?", "code_to_trace": code, "trace_answer": str(val)}


def _dc_function(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    name, pin = rng.choice([("readAverage", "A0"), ("readLevel", "A1"), ("sampleLight", "A2")])
    n = rng.choice([4, 8, 16])
    reqs = [f"int {name}(int pin, int samples) helper", "analogRead in a for loop", f"loop calls {name}({pin}, {n})"]
    if d >= 4:
        reqs.append("Serial.println once per second using millis()")
    return {"type": "code", "prompt": f"Write {name}() that averages {n} readings from {pin}, and use it from loop().",
            "starter_code": "void setup() {\n  Serial.begin(9600);\n}\n\nvoid loop() {\n}", "requirements": reqs}


def _dc_choice(rng: random.Random, d: int, qtype: str) -> Dict[str, object]:
    device = rng.choice(["a plant waterer", "a parking sensor", "a night light", "a fan controller"])
    correct = "sense, decide, and act in separate functions called from loop()"
    wrong = ["everything inline in loop()", "all logic in setup()", "one function per pin"]
    choices, idx = _shuffle_choices(rng, correct, wrong)
    return {"type": "multiple_choice", "prompt": f"How would you structure the code for {device}?",
            "choices": choices, "correct_index": idx}


_TEMPLATES: Dict[str, List[Tuple[Tuple[str, ...], Callable]]] = {
    "low_level": [(("one_liner", "multiple_choice"), _ll_number), (("trace",), _ll_bitwise)],
    "control_flow": [(("trace", "multiple_choice"), _cf_loop), (("code",), _cf_blink)],
    "hardware_io": [(("code",), _hw_code), (("multiple_choice", "one_liner", "trace"), _hw_pwm)],
    "code_reading": [(("trace", "multiple_choice"), _cr_expr)],
    "decomposition": [(("code",), _dc_function), (("multiple_choice",), _dc_choice)],
}


class TemplateGenerator:
    """Offline stand-in for the provider: fills parameterized templates."""

    def __init__(self, rng: Optional[random.Random] = None):
        # seeded from the global stream (see config.seed_rng)
        self.rng = rng or random.Random(random.randint(0, 2**31 - 1))

    def _pick(self, dimension: str, question_type: str) -> Callable:
        options = _TEMPLATES.get(dimension)
        if not options:
            raise ValueError(f"no templates for dimension {dimension!r}")
        for types, fn in options:
            if question_type in types:
                return fn
        return options[0][1]

    def generate(self, dimension: str, difficulty: int, question_type: str,
                 recent_texts: Sequence[str] = ()) -> Question:
        d = max(SCALE_MIN, min(SCALE_MAX, int(difficulty)))
        fn = self._pick(dimension, question_type)
        recent = set(recent_texts)
        raw: Dict[str, object] = {}
        for _ in range(_MAX_DRAWS):
            raw = fn(self.rng, d, question_type)
            if raw["prompt"] not in recent or raw.get("code_to_trace"):
                break
        return Question(
            id=f"tpl_{self.rng.getrandbits(48):012x}",
            dimension=dimension,
            difficulty=d,
            source="generate",
            tags=["template"],
            **raw,
        )
