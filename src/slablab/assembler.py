"""Group the flat atom list into typed molecules using the bond graph."""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Set

from slablab.atoms import Atom, AtomArena
from slablab.bondgraph import BondGraph, BondKind
from slablab.errors import TopologyError
from slablab.models import AssemblerConfig, MoleculeTemplate
from slablab.molecules import Molecule, MoleculeKind, create_molecule

logger = logging.getLogger("slablab")

GraphFactory = Callable[[], BondGraph]


class MoleculeAssembler:
    """Builds molecules from an arena and a freshly updated bond graph.

    Simple templates run first, then the specialized parsers in configured
    order. Atoms left over afterwards raise :class:`TopologyError`.
    """

    def __init__(self, config: Optional[AssemblerConfig] = None):
        self.config = config or AssemblerConfig()
        self.molecules: List[Molecule] = []
        self.last_parse: Optional[int] = None
        self.parse_count = 0
        self._parsers: Dict[str, Callable[[AtomArena, BondGraph, Set[int]], None]] = {
            "alkanes": self._parse_alkanes,
            "nitrates": self._parse_nitrates,
            "protons": self._parse_protons,
        }
        self._pending: List[Molecule] = []

    def parse(self, arena: AtomArena, graph: BondGraph, timestep: Optional[int] = None) -> List[Molecule]:
        arena.clear_parents()
        self._pending = []
        pool: Set[int] = set(range(len(arena)))

        for template in self.config.templates:
            self._parse_template(arena, graph, template, pool)
        for name in self.config.parsers:
            self._parsers[name](arena, graph, pool)

        if pool:
            leftovers = sorted(pool)
            descriptions = [repr(Atom(arena, idx)) for idx in leftovers]
            logger.error("Unparsed atoms after assembly: %s", ", ".join(descriptions[:20]))
            raise TopologyError(descriptions, timestep=timestep, atom_ids=leftovers)

        molecules = self._pending
        self._pending = []
        for molecule in molecules:
            molecule.set_atoms()
        self.molecules = molecules
        self.last_parse = timestep
        self.parse_count += 1
        return molecules

    def needs_reparse(self, timestep: int) -> bool:
        if self.last_parse is None or not self.molecules:
            return True
        return timestep - self.last_parse >= self.config.reparse_limit

    def update(self, arena: AtomArena, graph_factory: GraphFactory, timestep: int) -> List[Molecule]:
        """Reparse on the configured cadence; otherwise refresh existing molecules."""
        if self.needs_reparse(timestep):
            return self.parse(arena, graph_factory(), timestep)
        for molecule in self.molecules:
            molecule.set_atoms()
        return self.molecules

    def of_kind(self, *kinds: MoleculeKind) -> List[Molecule]:
        wanted = {MoleculeKind(kind) for kind in kinds}
        return [mol for mol in self.molecules if mol.kind in wanted]

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for molecule in self.molecules:
            counts[molecule.kind.value] = counts.get(molecule.kind.value, 0) + 1
        return counts

    def _add(self, arena: AtomArena, kind, indices: List[int], pool: Set[int], **kwargs) -> Molecule:
        molecule = create_molecule(kind, arena, indices, len(self._pending), **kwargs)
        self._pending.append(molecule)
        pool.difference_update(indices)
        return molecule

    def _parse_template(
        self,
        arena: AtomArena,
        graph: BondGraph,
        template: MoleculeTemplate,
        pool: Set[int],
    ) -> None:
        for idx in sorted(pool):
            if idx not in pool or arena.elements[idx] != template.central:
                continue
            outers = graph.bonded_atoms(idx, BondKind.COVALENT, template.outer)
            if len(outers) != template.count or not all(o in pool for o in outers):
                continue
            self._add(arena, template.kind, outers + [idx], pool, name=template.name)

    def _covalent_group(self, graph: BondGraph, seeds: List[int], pool: Set[int]) -> List[int]:
        seen = set(seeds)
        queue = list(seeds)
        while queue:
            current = queue.pop()
            for neighbor in graph.bonded_atoms(current, BondKind.COVALENT):
                if neighbor in pool and neighbor not in seen:
                    seen.add(neighbor)
                    queue.append(neighbor)
        return sorted(seen)

    def _parse_alkanes(self, arena: AtomArena, graph: BondGraph, pool: Set[int]) -> None:
        for backbone in graph.components(BondKind.COVALENT, "C"):
            if not all(c in pool for c in backbone):
                continue
            members = self._covalent_group(graph, backbone, pool)
            chain = _chain_order(graph, backbone)
            oxygens = [i for i in members if arena.elements[i] == "O"]
            hydrogens = [i for i in members if arena.elements[i] == "H"]
            acid_h = [h for h in hydrogens if graph.bonded_atoms(h, BondKind.COVALENT, "O")]

            if len(chain) == 1 and len(oxygens) == 1 and len(members) == 4:
                roles = {"C": chain[0], "O": oxygens[0]}
                self._add(arena, MoleculeKind.FORMALDEHYDE, chain + oxygens + hydrogens, pool,
                          roles=roles, carbons=chain)
            elif len(chain) == 3 and len(oxygens) == 4:
                kind = {2: MoleculeKind.MALONIC_ACID, 1: MoleculeKind.MALONATE}.get(
                    len(acid_h), MoleculeKind.DIMALONATE
                )
                roles = {"C1": chain[0], "CM": chain[1], "C2": chain[2]}
                roles.update(_carboxyl_roles(graph, chain[0], "1"))
                roles.update(_carboxyl_roles(graph, chain[2], "2"))
                self._add(arena, kind, _ordered(chain, oxygens, hydrogens), pool,
                          roles=roles, carbons=chain)
            elif len(chain) == 4 and len(oxygens) == 4:
                roles = {f"C{n + 1}": carbon for n, carbon in enumerate(chain)}
                roles.update(_carboxyl_roles(graph, chain[0], "1"))
                roles.update(_carboxyl_roles(graph, chain[3], "4"))
                self._add(arena, MoleculeKind.SUCCINIC_ACID, _ordered(chain, oxygens, hydrogens), pool,
                          roles=roles, carbons=chain)
            else:
                logger.debug("Carbon group %s does not match a known acid; kept as generic", chain)
                self._add(arena, MoleculeKind.GENERIC, _ordered(chain, oxygens, hydrogens, members), pool,
                          carbons=chain)

    def _parse_nitrates(self, arena: AtomArena, graph: BondGraph, pool: Set[int]) -> None:
        for idx in sorted(pool):
            if idx not in pool or arena.elements[idx] != "N":
                continue
            oxygens = [o for o in graph.bonded_atoms(idx, BondKind.COVALENT, "O") if o in pool]
            if len(oxygens) != 3:
                continue
            acid_h = [
                h
                for o in oxygens
                for h in graph.bonded_atoms(o, BondKind.COVALENT, "H")
                if h in pool
            ]
            if acid_h:
                self._add(arena, MoleculeKind.NITRIC_ACID, oxygens + [idx] + acid_h[:1], pool)
            else:
                self._add(arena, MoleculeKind.NITRATE, oxygens + [idx], pool)

    def _parse_protons(self, arena: AtomArena, graph: BondGraph, pool: Set[int]) -> None:
        for idx in sorted(pool):
            if idx not in pool or arena.elements[idx] != "O":
                continue
            partners = graph.bonded_atoms(idx, BondKind.COVALENT)
            hydrogens = [h for h in partners if arena.elements[h] == "H" and h in pool]
            if len(hydrogens) == 3:
                self._add(arena, MoleculeKind.HYDRONIUM, hydrogens + [idx], pool)
            elif len(hydrogens) == 1 and len(partners) == 1:
                self._add(arena, MoleculeKind.HYDROXIDE, hydrogens + [idx], pool)


def _chain_order(graph: BondGraph, carbons: List[int]) -> List[int]:
    """Carbons in bonding order, starting from the lowest-index chain end."""
    carbon_set = set(carbons)
    neighbors = {
        c: [n for n in graph.bonded_atoms(c, BondKind.COVALENT, "C") if n in carbon_set]
        for c in carbons
    }
    ends = [c for c in carbons if len(neighbors[c]) <= 1]
    start = min(ends) if ends else min(carbons)
    order = [start]
    seen = {start}
    stack = list(reversed(neighbors[start]))
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        order.append(current)
        stack.extend(n for n in reversed(neighbors[current]) if n not in seen)
    return order


def _carboxyl_roles(graph: BondGraph, carbon: int, label: str) -> Dict[str, int]:
    """Carbonyl O (no H, or lowest index) as O<label>, the other as OH<label>."""
    oxygens = graph.bonded_atoms(carbon, BondKind.COVALENT, "O")
    if len(oxygens) != 2:
        return {}
    protonated = {o: bool(graph.bonded_atoms(o, BondKind.COVALENT, "H")) for o in oxygens}
    ordered = sorted(oxygens, key=lambda o: (protonated[o], o))
    roles = {f"O{label}": ordered[0], f"OH{label}": ordered[1]}
    acid_h = graph.bonded_atoms(ordered[1], BondKind.COVALENT, "H")
    if acid_h:
        roles[f"H{label}"] = acid_h[0]
    return roles


def _ordered(chain: List[int], oxygens: List[int], hydrogens: List[int], members: Optional[List[int]] = None) -> List[int]:
    ordered = list(chain) + list(oxygens) + list(hydrogens)
    if members is not None:
        placed = set(ordered)
        ordered.extend(i for i in members if i not in placed)
    return ordered
