"""
HL7 sample messages shared by the test modules.
"""


def hl7_segment(name, values):
    """Build a segment from ``{position: value}``."""
    fields = [""] * (max(values) + 1)
    fields[0] = name
    for position, value in values.items():
        fields[position] = value
    return "|".join(fields)


ORU_EXAMPLE = (
    "MSH|^~\\&|HIS|HOSP|LAB|LABSYS|202401010800||ORU^R01|MSG001|P|2.5\r"
    "PID|1|MRN123||Doe^John|||19900101|M\r"
    "OBX|1|NM|GLU^Glucose||95|mg/dL|70-110|N|||F|"
)

ADT_EXAMPLE = "\r".join(
    [
        "MSH|^~\\&|ADT|HOSPITAL|GATEWAY|HOSPITAL|20240101120000||ADT^A01|ADT001|P|2.5",
        "PID|1|P12345|P12345^^^HOSPITAL^MR||Smith^Jane^Q||19850315|F|||"
        "123 Main St^^Springfield^IL^62701^USA||555-0100",
        hl7_segment(
            "PV1",
            {1: "1", 2: "I", 3: "ICU^101^A", 4: "E", 7: "1234^Welby^Marcus", 19: "V789", 44: "20240101110000"},
        ),
    ]
) + "\r"

ORM_EXAMPLE = (
    "MSH|^~\\&|CPOE|HOSPITAL|LAB|LABSYS|20240102090000||ORM^O01|ORM001|P|2.5\r"
    "PID|1|P12345||Smith^Jane\r"
    "ORC|NW|ORD100\r"
    "OBR|1|ORD100||CBC^Complete Blood Count^LN|S\r"
)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
