from typing import Dict, List, Optional, Type

from thinshell.core.params import BendingKind, ElasticSetup, StretchingKind
from thinshell.energies.base import EnergyTerm
from thinshell.energies.bending import HingeBending, QuadraticBending
from thinshell.energies.external import GravityEnergy, PenaltyEnergy, PointForceEnergy, PressureEnergy
from thinshell.energies.midedge import MidEdgeBending
from thinshell.energies.stretching import NeoHookeanStretching, StVKStretching

# Formulation dispatch tables
STRETCHING_TERMS: Dict[StretchingKind, Type[EnergyTerm]] = {
    StretchingKind.STVK: StVKStretching,
    StretchingKind.NEO_HOOKEAN: NeoHookeanStretching,
}

BENDING_TERMS: Dict[BendingKind, Type[EnergyTerm]] = {
    BendingKind.HINGE: HingeBending,
    BendingKind.QUADRATIC: QuadraticBending,
    BendingKind.MID_EDGE: MidEdgeBending,
}


def make_stretching_term(setup: ElasticSetup, n_workers: Optional[int] = None) -> EnergyTerm:
    return STRETCHING_TERMS[setup.formulation.stretching](n_workers)


def make_bending_term(setup: ElasticSetup, n_workers: Optional[int] = None) -> EnergyTerm:
    return BENDING_TERMS[setup.formulation.bending](n_workers)


def make_external_terms(setup: ElasticSetup, n_workers: Optional[int] = None) -> List[EnergyTerm]:
    """
    External terms in evaluation order. Pressure only acts for a positive
    pressure and the penalty only for a positive stiffness.
    """
    terms: List[EnergyTerm] = []
    if setup.loads.pressure > 0:
        terms.append(PressureEnergy(n_workers))
    terms.append(GravityEnergy(n_workers))
    terms.append(PointForceEnergy(n_workers))
    if setup.material.penalty_k > 0:
        terms.append(PenaltyEnergy(n_workers))
    return terms
