from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

from .models import ExactAnswer, Level, TopicRule, Unit, UnitLevel

G3_UNIT_LIMIT = 9

UNITS: Tuple[Unit, ...] = (
    Unit(1, "Safety", UnitLevel.BOTH),
    Unit(2, "Fasteners, Tools and Testing Equipment", UnitLevel.BOTH),
    Unit(3, "Properties of Natural Gas and Fuels Safe Handling", UnitLevel.BOTH),
    Unit(4, "Code and Regulations", UnitLevel.BOTH),
    Unit(5, "Introduction to Electricity", UnitLevel.BOTH),
    Unit(6, "Technical Manuals, Specs, Drawings and Graphs", UnitLevel.BOTH),
    Unit(7, "Customer Relations", UnitLevel.BOTH),
    Unit(8, "Introduction to Piping and Tubing Systems", UnitLevel.BOTH),
    Unit(9, "Introduction to Gas Appliances", UnitLevel.BOTH),
    Unit(10, "Advanced Piping and Tubing Systems", UnitLevel.G2),
    Unit(11, "Pressure Regulators", UnitLevel.G2),
    Unit(12, "Basic Electricity for Gas Fired Equipment", UnitLevel.G2),
    Unit(13, "Controls", UnitLevel.G2),
    Unit(14, "Building as a System", UnitLevel.G2),
    Unit(15, "Domestic Appliances", UnitLevel.G2),
    Unit(16, "Gas Fired Refrigerators", UnitLevel.G2),
    Unit(17, "Conversion Burners", UnitLevel.G2),
    Unit(18, "Water Heaters and Combination Systems", UnitLevel.G2),
    Unit(19, "Forced Warm Air Heating Systems", UnitLevel.G2),
    Unit(20, "Hydronic Heating Systems", UnitLevel.G2),
    Unit(21, "Space Heaters and Fireplaces", UnitLevel.G2),
    Unit(22, "Venting Systems", UnitLevel.G2),
    Unit(23, "Forced Air Add-On Devices", UnitLevel.G2),
    Unit(24, "Air Handling", UnitLevel.G2),
)

# Evaluated in this order; every matching keyword contributes its units.
TOPIC_RULES: Tuple[TopicRule, ...] = (
    TopicRule("safety", (1,)),
    TopicRule("piping", (8, 10)),
    TopicRule("pipe sizing", (8, 10)),
    TopicRule("tubing", (8, 10)),
    TopicRule("tools", (2,)),
    TopicRule("testing", (2,)),
    TopicRule("gas properties", (3,)),
    TopicRule("natural gas", (3,)),
    TopicRule("codes", (4,)),
    TopicRule("regulations", (4,)),
    TopicRule("electricity", (5, 12)),
    TopicRule("electrical", (5, 12)),
    TopicRule("manuals", (6,)),
    TopicRule("drawings", (6,)),
    TopicRule("customer", (7,)),
    TopicRule("appliances", (9, 15)),
    TopicRule("furnace", (19,)),
    TopicRule("heating", (19, 20, 21)),
    TopicRule("water heater", (18,)),
    TopicRule("venting", (22,)),
    TopicRule("controls", (13,)),
    TopicRule("regulators", (11,)),
    TopicRule("clearance", (1, 21, 22)),
    TopicRule("installation", (8, 9, 10, 15)),
    TopicRule("commercial", (10, 11, 12, 13, 14, 15, 16, 17, 18, 19, 20)),
    TopicRule("pressure", (11, 8, 10)),
    TopicRule("building", (14,)),
    TopicRule("construction", (14,)),
    TopicRule("platform construction", (14,)),
    TopicRule("balloon construction", (14,)),
    TopicRule("solid construction", (14,)),
    TopicRule("frame construction", (14,)),
    TopicRule("cavity wall", (14,)),
)

PPE_ANSWER = (
    "## Personal Protective Equipment (PPE) Requirements\n\n"
    "**Unit 1 - Safety** covers the PPE a gas technician is expected to wear on the job:\n\n"
    "• **Eye protection**: CSA-approved safety glasses or goggles when cutting, threading or soldering\n"
    "• **Foot protection**: CSA green-patch safety footwear with toe and sole protection\n"
    "• **Hand protection**: gloves suited to the task (cut, heat or chemical resistant)\n"
    "• **Head protection**: hard hat on construction sites and where overhead hazards exist\n"
    "• **Hearing protection**: when working near operating equipment or power tools\n"
    "• **Respiratory protection**: when exposed to dust, fumes or oxygen-deficient atmospheres\n\n"
    "Employers must supply task-specific PPE and training; the technician is responsible for "
    "inspecting and wearing it. Always consult the applicable provincial OH&S regulations."
)

PURGING_ANSWER = (
    "## Purging Gas Piping\n\n"
    "**CSA B149.1-25** requires piping to be purged before it is placed into service:\n\n"
    "• Purge to a safe location outdoors or through an appliance burner with a continuous ignition source\n"
    "• Never purge into a combustion chamber of an appliance that is not lit\n"
    "• Monitor the purge with a combustible gas indicator\n"
    "• Larger pipe sizes and lengths require a documented purging procedure\n"
    "• Stop the purge once a steady flow of gas is confirmed at the outlet"
)

LEAK_TEST_ANSWER = (
    "## Leak Testing\n\n"
    "**Unit 2 and Unit 8** cover leak detection on gas piping and appliance connections:\n\n"
    "• Use an approved leak detection solution or electronic gas detector\n"
    "• Never use an open flame to locate a leak\n"
    "• Test all joints made or disturbed during the installation\n"
    "• Repair leaks and re-test before returning the system to service\n"
    "• Record results on the installation documentation"
)

PRESSURE_TEST_ANSWER = (
    "## Pressure Testing Piping Systems\n\n"
    "**CSA B149.1-25** requires new piping to be pressure tested before it is covered or put in service:\n\n"
    "• Test with air or an inert gas, never with oxygen or the fuel gas itself\n"
    "• Test pressure and duration depend on the system pressure and pipe length\n"
    "• Isolate appliances and components not rated for the test pressure\n"
    "• Use a gauge or manometer with appropriate range and resolution\n"
    "• Any pressure drop not attributable to temperature change indicates a leak"
)

CLEARANCE_ANSWER = (
    "## Clearance to Combustibles\n\n"
    "Clearances are set by the appliance certification and the installation code:\n\n"
    "• The appliance rating plate and manufacturer's instructions take precedence\n"
    "• Vent connectors have their own minimum clearances by vent type\n"
    "• Clearance reduction requires approved shielding methods\n"
    "• Maintain service clearances for access and maintenance\n"
    "• Verify clearances as part of every installation inspection"
)

LEVELS_ANSWER = (
    "## G3 vs G2 Certification\n\n"
    "• **G3** covers Units 1-9: fundamentals, safety, codes, basic piping and appliances\n"
    "• **G2** includes every G3 unit plus Units 10-24: advanced piping, regulators, controls, "
    "venting, commercial systems and the full range of gas appliances\n"
    "• G3 is a prerequisite for G2 training\n"
    "• Both are examined against CSA B149.1-25, and G2 adds B149.2-25"
)

# First matching trigger wins. PPE triggers are phrases so that words such as
# "copper" or "upper" never pull in the PPE answer.
EXACT_ANSWERS: Tuple[ExactAnswer, ...] = (
    ExactAnswer("ppe requirement", PPE_ANSWER),
    ExactAnswer("what ppe", PPE_ANSWER),
    ExactAnswer("ppe is", PPE_ANSWER),
    ExactAnswer("personal protective equipment", PPE_ANSWER),
    ExactAnswer("purging", PURGING_ANSWER),
    ExactAnswer("leak test", LEAK_TEST_ANSWER),
    ExactAnswer("pressure test", PRESSURE_TEST_ANSWER),
    ExactAnswer("clearance to combustible", CLEARANCE_ANSWER),
    ExactAnswer("g3 vs g2", LEVELS_ANSWER),
    ExactAnswer("difference between g3 and g2", LEVELS_ANSWER),
)

LEVEL_DESCRIPTIONS: Dict[Level, str] = {
    Level.G3: (
        "The G3 certification covers natural gas appliances up to 400,000 BTU/hr and includes "
        "Units 1-9 of CSA B149.1-25 training materials."
    ),
    Level.G2: (
        "The G2 certification covers all gas appliances and advanced installations, including "
        "Units 1-24 of CSA B149.1-25 and B149.2-25 training materials."
    ),
}


class ContentCatalog:
    def __init__(self, units: Sequence[Unit] = UNITS, g3_limit: int = G3_UNIT_LIMIT) -> None:
        self._units: Tuple[Unit, ...] = tuple(sorted(units, key=lambda unit: unit.number))
        if len({unit.number for unit in self._units}) != len(self._units):
            raise ValueError("Unit numbers must be unique.")
        self._g3_limit = g3_limit

    def units_for_level(self, level: Level) -> List[Unit]:
        visible = [unit for unit in self._units if unit.visible_to(level)]
        if level is Level.G3:
            return visible[: self._g3_limit]
        return visible


def level_description(level: Level) -> str:
    return LEVEL_DESCRIPTIONS[level]


catalog = ContentCatalog()
