"""Per-frame connectivity graph built from geometric criteria."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

import networkx as nx
import numpy as np
from MDAnalysis.lib import distances

from slablab.atoms import Atom, AtomArena
from slablab.geometry import mda_box
from slablab.models import BondCriteria

logger = logging.getLogger("slablab")

AtomRef = Union[int, Atom]


class BondKind(str, Enum):
    COVALENT = "covalent"
    HBOND = "hbond"
    INTERACTION = "interaction"


def _index(atom: AtomRef) -> int:
    return atom.index if isinstance(atom, Atom) else int(atom)


class BondGraph:
    """Undirected graph over atom ids with edges tagged by :class:`BondKind`.

    The graph is rebuilt from scratch by :meth:`update_graph`; nothing carries
    over between calls. Only the atoms passed to the last update are nodes, so
    callers can restrict the work to a shortlist of atoms.
    """

    def __init__(self, arena: AtomArena, criteria: Optional[BondCriteria] = None):
        self.arena = arena
        self.criteria = criteria or BondCriteria()
        self.graph = nx.Graph()

    def __contains__(self, atom: AtomRef) -> bool:
        return _index(atom) in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def update_graph(self, atoms: Optional[Iterable[AtomRef]] = None) -> "BondGraph":
        if atoms is None:
            indices = np.arange(len(self.arena), dtype=np.int64)
        else:
            indices = np.unique(np.asarray([_index(atom) for atom in atoms], dtype=np.int64))
        self.graph = nx.Graph()
        self.graph.add_nodes_from(int(idx) for idx in indices)
        if indices.size < 2:
            return self

        coords = self.arena.positions[indices].astype(np.float32)
        box = mda_box(self.arena.box)
        pairs, dists = distances.self_capped_distance(
            coords,
            max_cutoff=self.criteria.max_cutoff,
            box=box,
            return_distances=True,
        )
        elements = self.arena.elements

        remaining: List[Tuple[int, int, float]] = []
        for (i, j), dist in zip(pairs, dists):
            a, b = int(indices[i]), int(indices[j])
            threshold = self.criteria.covalent_threshold(elements[a], elements[b])
            if threshold is not None and dist < threshold:
                self.graph.add_edge(a, b, kind=BondKind.COVALENT, distance=float(dist))
            else:
                remaining.append((a, b, float(dist)))

        self._add_hydrogen_bonds(remaining, box)

        for a, b, dist in remaining:
            if self.graph.has_edge(a, b):
                continue
            threshold = self.criteria.interaction_threshold(elements[a], elements[b])
            if threshold is not None and dist < threshold:
                self.graph.add_edge(a, b, kind=BondKind.INTERACTION, distance=dist)
        return self

    def _add_hydrogen_bonds(self, candidates: List[Tuple[int, int, float]], box) -> None:
        elements = self.arena.elements
        acceptors = set(self.criteria.acceptors)
        donors = set(self.criteria.donors)
        triples: List[Tuple[int, int, int, float]] = []
        for a, b, dist in candidates:
            if dist >= self.criteria.hbond_distance:
                continue
            for hydrogen, acceptor in ((a, b), (b, a)):
                if elements[hydrogen] != "H" or elements[acceptor] not in acceptors:
                    continue
                donor = self._donor_of(hydrogen, donors)
                if donor is None or donor == acceptor:
                    continue
                triples.append((donor, hydrogen, acceptor, dist))
        if not triples:
            return
        positions = self.arena.positions
        donor_xyz = positions[[t[0] for t in triples]].astype(np.float32)
        hydrogen_xyz = positions[[t[1] for t in triples]].astype(np.float32)
        acceptor_xyz = positions[[t[2] for t in triples]].astype(np.float32)
        angles = np.degrees(distances.calc_angles(donor_xyz, hydrogen_xyz, acceptor_xyz, box=box))
        for (donor, hydrogen, acceptor, dist), angle in zip(triples, np.atleast_1d(angles)):
            if angle >= self.criteria.hbond_angle and not self.graph.has_edge(hydrogen, acceptor):
                self.graph.add_edge(
                    hydrogen, acceptor, kind=BondKind.HBOND, distance=dist, angle=float(angle)
                )

    def _donor_of(self, hydrogen: int, donors) -> Optional[int]:
        partners = [
            atom
            for atom in self.bonded_atoms(hydrogen, BondKind.COVALENT)
            if self.arena.elements[atom] in donors
        ]
        return partners[0] if partners else None

    def bonded_atoms(
        self,
        atom: AtomRef,
        kind: Optional[BondKind] = None,
        element: Optional[str] = None,
    ) -> List[int]:
        """Sorted ids bonded to ``atom``; unknown atoms give an empty list."""
        idx = _index(atom)
        if idx not in self.graph:
            return []
        if element is not None:
            element = element.capitalize()
        found = []
        for neighbor, attrs in self.graph.adj[idx].items():
            if kind is not None and attrs["kind"] != kind:
                continue
            if element is not None and self.arena.elements[neighbor] != element:
                continue
            found.append(int(neighbor))
        return sorted(found)

    def bond_kind(self, a: AtomRef, b: AtomRef) -> Optional[BondKind]:
        data = self.graph.get_edge_data(_index(a), _index(b))
        return data["kind"] if data else None

    def edges(self, kind: Optional[BondKind] = None) -> List[Tuple[int, int]]:
        return sorted(
            (min(a, b), max(a, b))
            for a, b, attrs in self.graph.edges(data=True)
            if kind is None or attrs["kind"] == kind
        )

    def components(
        self,
        kind: BondKind = BondKind.COVALENT,
        element: Optional[str] = None,
    ) -> List[List[int]]:
        """Connected groups over edges of one kind, optionally among one element only."""
        if element is not None:
            element = element.capitalize()
            nodes = [n for n in self.graph.nodes if self.arena.elements[n] == element]
        else:
            nodes = list(self.graph.nodes)
        sub = nx.Graph()
        sub.add_nodes_from(nodes)
        node_set = set(nodes)
        sub.add_edges_from(
            (a, b)
            for a, b, attrs in self.graph.edges(data=True)
            if attrs["kind"] == kind and a in node_set and b in node_set
        )
        return sorted(sorted(int(n) for n in comp) for comp in nx.connected_components(sub))

    def summary(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in BondKind}
        for _, _, attrs in self.graph.edges(data=True):
            counts[attrs["kind"].value] += 1
        counts["atoms"] = self.graph.number_of_nodes()
        return counts
