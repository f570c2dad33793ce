# -*- coding: utf-8 -*-
"""
pmdmodel.py - In-memory object graph of a PMD model.

Entities reference each other directly (a vertex holds its two BoneInfo
objects, a surface its three Vertex objects, ...). Integer indices only exist
in the file; they are resolved by pmdloader and re-derived by pmdexporter from
each entity's serial_number, which always equals its position in the owning
model list.
"""
from __future__ import annotations

from enum import IntEnum
from typing import (Dict, Generic, Iterable, Iterator, List, NamedTuple,
                    Optional, TypeVar, Union)

from pmdstream import RIGIDGROUP_FIXEDNUM

##################################################################################
# Basic container classes
T = TypeVar('T')
class SerialList(list[T], Generic[T]):
    """
    A list that keeps every element's 'serial_number' equal to its index.
    Elements must have a writable 'serial_number' attribute.
    Slicing returns a plain list so the sliced elements keep their numbers.
    """

    def __init__(self, items: Iterable[T] = ()):
        super().__init__(items)
        self._renumber()

    def _renumber(self, start: int = 0):
        for idx in range(start, len(self)):
            item = super().__getitem__(idx)
            if item is not None:
                item.serial_number = idx

    def __repr__(self):
        return f"<SerialList(len={len(self)})>"

    def __getitem__(self, idx: Union[int, slice]):
        result = super().__getitem__(idx)
        if isinstance(idx, slice):
            return list(result)
        return result

    def __setitem__(self, idx: Union[int, slice], value):
        super().__setitem__(idx, value)
        self._renumber()

    def __delitem__(self, idx: Union[int, slice]):
        super().__delitem__(idx)
        self._renumber()

    def __iadd__(self, items: Iterable[T]):
        self.extend(items)
        return self

    def append(self, item: T):
        item.serial_number = len(self)
        super().append(item)

    def insert(self, idx: int, item: T):
        super().insert(idx, item)
        self._renumber()

    def extend(self, items: Iterable[T]):
        start = len(self)
        super().extend(items)
        self._renumber(start)

    def pop(self, idx: int = -1) -> T:
        item = super().pop(idx)
        self._renumber()
        return item

    def remove(self, item: T):
        # identity, not equality: value-equal entities are still distinct
        for idx in range(len(self)):
            if super().__getitem__(idx) is item:
                super().__delitem__(idx)
                self._renumber(idx)
                return
        raise ValueError(f"{item!r} is not in list")

    def clear(self):
        super().clear()

    def sort(self, *args, **kwargs):
        super().sort(*args, **kwargs)
        self._renumber()

    def reverse(self):
        super().reverse()
        self._renumber()


##################################################################################
# Value types
class Pos2d(NamedTuple):
    x: float = 0.0
    y: float = 0.0

class Pos3d(NamedTuple):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

class Vec3d(NamedTuple):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

class Rad3d(NamedTuple):
    """Rotation in radians."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

class Deg3d(NamedTuple):
    """Rotation in degrees."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

class Color(NamedTuple):
    r: float = 0.0
    g: float = 0.0
    b: float = 0.0
    a: float = 1.0

    def opaque(self) -> Color:
        if self.a == 1.0:
            return self
        return Color(self.r, self.g, self.b, 1.0)


class I18nText:
    """A text with a primary (Japanese) and a global (English) form."""
    __slots__ = ("primary", "global_text")

    def __init__(self, primary: Optional[str] = None, global_text: Optional[str] = None):
        self.primary: Optional[str] = primary
        self.global_text: Optional[str] = global_text

    def has_primary(self) -> bool:
        return self.primary is not None

    def has_global(self) -> bool:
        return self.global_text is not None

    @property
    def text(self) -> str:
        if self.primary is not None:
            return self.primary
        if self.global_text is not None:
            return self.global_text
        return ""

    def __str__(self):
        return self.text

    def __repr__(self):
        return '<I18nText primary %r, global %r>' % (self.primary, self.global_text)


##################################################################################
# Enumerations
class _Coded(IntEnum):
    @classmethod
    def decode(cls, code: int):
        try:
            return cls(code)
        except ValueError:
            raise ValueError(f'unknown {cls.__name__} code: {code}') from None

    def encode(self) -> int:
        return int(self)


class BoneType(_Coded):
    ROTATE = 0x00       # rotate
    ROTMOV = 0x01       # rotate and move
    IK = 0x02
    UNKNOWN = 0x03
    UNDERIK = 0x04      # affected by IK
    UNDERROT = 0x05     # affected by rotation
    IKCONNECTED = 0x06  # IK target
    HIDDEN = 0x07
    TWIST = 0x08
    LINKEDROT = 0x09    # rotation-linked


class MorphType(_Coded):
    BASE = 0x00
    EYEBROW = 0x01
    EYE = 0x02
    LIP = 0x03
    EXTRA = 0x04

    def is_base(self) -> bool:
        return self is MorphType.BASE


class RigidShapeType(_Coded):
    SPHERE = 0x00
    BOX = 0x01
    CAPSULE = 0x02


class RigidBehaviorType(_Coded):
    FOLLOWBONE = 0x00     # follows its bone
    ONLYDYNAMICS = 0x01   # physics only
    BONEDDYNAMICS = 0x02  # physics, aligned to bone position


##################################################################################
class ToonMap:
    """Toon index (0-9, plus the legacy 0xFF slot) to texture filename."""
    DEFAULT = {
        0x00: "toon01.bmp",
        0x01: "toon02.bmp",
        0x02: "toon03.bmp",
        0x03: "toon04.bmp",
        0x04: "toon05.bmp",
        0x05: "toon06.bmp",
        0x06: "toon07.bmp",
        0x07: "toon08.bmp",
        0x08: "toon09.bmp",
        0x09: "toon10.bmp",
        0xff: "toon0.bmp",
    }

    def __init__(self):
        self._map: Dict[int, str] = dict(self.DEFAULT)

    def __repr__(self):
        return '<ToonMap %s>' % ', '.join(f'({k}){v}' for k, v in sorted(self._map.items()))

    def __eq__(self, other):
        if not isinstance(other, ToonMap):
            return NotImplemented
        return self._map == other._map

    def get_indexed_toon(self, idx: int) -> Optional[str]:
        return self._map.get(idx)

    def set_indexed_toon(self, idx: int, filename: str) -> None:
        if filename is None:
            raise ValueError('toon filename must not be None')
        self._map[idx] = filename

    __getitem__ = get_indexed_toon
    __setitem__ = set_indexed_toon

    def is_default_map(self) -> bool:
        return self._map == self.DEFAULT

    def is_default_toon(self, idx: int) -> bool:
        toon = self._map.get(idx)
        if toon is None:
            return False
        return toon == self.DEFAULT.get(idx)

    def reset_default_map(self) -> None:
        self._map = dict(self.DEFAULT)

    def reset_indexed_toon(self, idx: int) -> None:
        if idx in self.DEFAULT:
            self._map[idx] = self.DEFAULT[idx]
        else:
            self._map.pop(idx, None)


##################################################################################
# Geometry
class Vertex:
    __slots__ = ("serial_number", "position", "normal", "uv", "bone_a", "bone_b",
                 "_weight_a", "edge_appearance")
    MIN_WEIGHT = 0
    MAX_WEIGHT = 100

    def __init__(self, position=Pos3d(), normal=Vec3d(), uv=Pos2d()):
        self.serial_number = -1
        self.position = Pos3d(*position)
        self.normal = Vec3d(*normal)
        self.uv = Pos2d(*uv)
        self.bone_a: Optional[BoneInfo] = None
        self.bone_b: Optional[BoneInfo] = None
        self._weight_a = 50
        self.edge_appearance = True

    def __repr__(self):
        return '<Vertex(%d) pos %s, normal %s, uv %s, bones [%s<>%s], weight %d, %s>' % (
            self.serial_number,
            tuple(self.position),
            tuple(self.normal),
            tuple(self.uv),
            self.bone_a.name if self.bone_a else None,
            self.bone_b.name if self.bone_b else None,
            self._weight_a,
            'showEdge' if self.edge_appearance else 'hideEdge',
        )

    def set_bone_pair(self, bone_a: BoneInfo, bone_b: BoneInfo) -> None:
        if bone_a is None or bone_b is None:
            raise ValueError('vertex bones must not be None')
        self.bone_a = bone_a
        self.bone_b = bone_b

    @property
    def weight_a(self) -> int:
        """Bone A's share of the skinning weight, 0-100."""
        return self._weight_a

    @weight_a.setter
    def weight_a(self, weight: int):
        if not self.MIN_WEIGHT <= weight <= self.MAX_WEIGHT:
            raise ValueError(f'vertex weight out of range: {weight}')
        self._weight_a = int(weight)

    @property
    def weight_b(self) -> int:
        return self.MAX_WEIGHT - self._weight_a

    @weight_b.setter
    def weight_b(self, weight: int):
        self.weight_a = self.MAX_WEIGHT - weight

    @property
    def weight_ratio_a(self) -> float:
        return self._weight_a / self.MAX_WEIGHT

    @property
    def weight_ratio_b(self) -> float:
        return (self.MAX_WEIGHT - self._weight_a) / self.MAX_WEIGHT


class Surface:
    """A triangle of three distinct vertices."""
    __slots__ = ("serial_number", "_vertices")

    def __init__(self, v1: Optional[Vertex] = None, v2: Optional[Vertex] = None, v3: Optional[Vertex] = None):
        self.serial_number = -1
        self._vertices = (None, None, None)
        if v1 is not None or v2 is not None or v3 is not None:
            self.set_triangle(v1, v2, v3)

    def __repr__(self):
        if not self.is_completed():
            return '<Surface(%d)>' % self.serial_number
        return '<Surface(%d) VID=[%d,%d,%d]>' % (
            self.serial_number, *(v.serial_number for v in self._vertices))

    def __iter__(self) -> Iterator[Vertex]:
        return iter(self._vertices)

    def set_triangle(self, v1: Vertex, v2: Vertex, v3: Vertex) -> None:
        if v1 is not None and (v1 is v2 or v1 is v3):
            raise ValueError('degenerate triangle')
        if v2 is not None and v2 is v3:
            raise ValueError('degenerate triangle')
        self._vertices = (v1, v2, v3)

    @property
    def vertices(self):
        return self._vertices

    def is_completed(self) -> bool:
        return all(v is not None for v in self._vertices)


class ShadeInfo:
    """Toon index plus optional texture and sphere-map filenames."""
    NO_TOON = 0xff

    def __init__(self, toon_map: Optional[ToonMap] = None):
        self.toon_map: Optional[ToonMap] = toon_map if toon_map is not None else ToonMap()
        self._toon_index = 0
        self.texture_file: Optional[str] = None
        self.spheremap_file: Optional[str] = None

    def __repr__(self):
        return '<ShadeInfo toon(%d)=%s, texture %s, sphere %s>' % (
            self._toon_index, self.toon_file_name, self.texture_file, self.spheremap_file)

    @property
    def toon_index(self) -> int:
        return self._toon_index

    @toon_index.setter
    def toon_index(self, idx: int):
        if not 0 <= idx <= 0xff:
            raise ValueError(f'toon index out of range: {idx}')
        self._toon_index = int(idx)

    def is_valid_toon_index(self) -> bool:
        return 0 <= self._toon_index <= 9

    @property
    def toon_file_name(self) -> Optional[str]:
        if self.toon_map is None:
            raise RuntimeError('no toon map assigned')
        return self.toon_map.get_indexed_toon(self._toon_index)

    def shading_file_text(self) -> str:
        """The on-disk form: "texture*spheremap" or either half alone."""
        text = self.texture_file or ""
        if self.spheremap_file:
            text += '*' + self.spheremap_file
        return text

    @staticmethod
    def split_shading_file(text: str):
        """Split the on-disk form into (texture, spheremap); missing halves are ""."""
        parts = text.split('*', 1)
        if len(parts) == 2:
            return parts[0], parts[1]
        only = parts[0]
        if only.endswith('.sph') or only.endswith('.spa'):
            return "", only
        return only, ""


class Material:
    def __init__(self):
        self.name = I18nText()
        self.diffuse = Color(0.0, 0.0, 0.0, 1.0)
        self._specular = Color(0.0, 0.0, 0.0, 1.0)
        self.shininess = 0.0
        self._ambient = Color(0.0, 0.0, 0.0, 1.0)
        self.edge_appearance = True
        self.shade_info = ShadeInfo()

        # Surfaces owned by this material, in file order
        self.surfaces: List[Surface] = []

    def __repr__(self):
        return '<Material diffuse %s, specular %s, ambient %s, shininess %.2f, edge %s, surfaces %d, %s>' % (
            tuple(self.diffuse),
            tuple(self._specular),
            tuple(self._ambient),
            self.shininess,
            self.edge_appearance,
            len(self.surfaces),
            self.shade_info,
        )

    def __iter__(self) -> Iterator[Surface]:
        return iter(self.surfaces)

    @property
    def specular(self) -> Color:
        return self._specular

    @specular.setter
    def specular(self, color):
        self._specular = Color(*color).opaque()

    @property
    def ambient(self) -> Color:
        return self._ambient

    @ambient.setter
    def ambient(self, color):
        self._ambient = Color(*color).opaque()


##################################################################################
# Skeleton
class BoneInfo:
    """
    A bone. prev_bone / next_bone / ik_bone are plain references into
    Model.bones and may form cycles.
    next_bone is the twist axis bone for TWIST bones and the influence source
    for LINKEDROT bones. LINKEDROT bones carry rotation_ratio instead of ik_bone.
    """

    def __init__(self, name: Optional[str] = None, bone_type: BoneType = BoneType.ROTATE):
        self.serial_number = -1
        self.name = I18nText(name)
        self._bone_type = bone_type
        self.prev_bone: Optional[BoneInfo] = None
        self.next_bone: Optional[BoneInfo] = None
        self.ik_bone: Optional[BoneInfo] = None
        self.rotation_ratio = 0
        self.position = Pos3d()

    def __repr__(self):
        def bone_name(bone):
            return bone.name.text if bone is not None else 'NONE'
        if self._bone_type is BoneType.LINKEDROT:
            link = 'rotratio=%d' % self.rotation_ratio
        else:
            link = 'ik=%s' % bone_name(self.ik_bone)
        return '<Bone%d(%s) type %s, prev=%s, next=%s, %s, %s>' % (
            self.serial_number,
            self.name.primary,
            self._bone_type.name,
            bone_name(self.prev_bone),
            bone_name(self.next_bone),
            link,
            tuple(self.position),
        )

    @property
    def bone_type(self) -> BoneType:
        return self._bone_type

    @bone_type.setter
    def bone_type(self, bone_type: BoneType):
        if bone_type is None:
            raise ValueError('bone type must not be None')
        self._bone_type = BoneType(bone_type)


class BoneGroup:
    """A named display group of bones. Only the DefaultBoneGroup at index 0 of Model.bone_groups is the default group."""

    def __init__(self, name: Optional[str] = None):
        self.serial_number = -1
        self.name = I18nText(name)
        self._bones: List[BoneInfo] = []

    def __repr__(self):
        return '<BoneGroup(%s) [%s]>' % (
            self.name.text, ', '.join(b.name.text for b in self.bones))

    def __iter__(self) -> Iterator[BoneInfo]:
        return iter(self.bones)

    @property
    def bones(self) -> List[BoneInfo]:
        return self._bones

    @property
    def is_default(self) -> bool:
        return False


class DefaultBoneGroup(BoneGroup):
    """
    The implicit group of every bone that no other group lists.
    Its membership is computed from the model on each access and is never stored.
    """

    def __init__(self, model: Model):
        BoneGroup.__init__(self)
        self._model = model

    @property
    def is_default(self) -> bool:
        return True

    @property
    def bones(self) -> List[BoneInfo]:
        return self._model.default_group_bones()


class IKChain:
    """
    An IK solve. chained_bones[0] is the IK target bone, the rest are the
    bones rotated by the solve, in file order.
    """

    def __init__(self, ik_bone: Optional[BoneInfo] = None, depth: int = 0, weight: float = 0.0):
        self.ik_bone: Optional[BoneInfo] = ik_bone
        self.ik_depth = depth
        self.ik_weight = weight
        self.chained_bones: List[BoneInfo] = []

    def __repr__(self):
        return '<IKChain depth %d, weight %s, IKbone %s [%s]>' % (
            self.ik_depth,
            self.ik_weight,
            self.ik_bone.name.text if self.ik_bone else None,
            ' => '.join(b.name.text for b in self.chained_bones),
        )

    def __iter__(self) -> Iterator[BoneInfo]:
        return iter(self.chained_bones)

    @property
    def target(self) -> Optional[BoneInfo]:
        return self.chained_bones[0] if self.chained_bones else None


##################################################################################
# Morphs
class MorphVertex:
    """
    A vertex moved by a morph. For the base morph 'offset' holds the absolute
    base position; otherwise it is the displacement from the base position.
    serial_number is the vertex's number in the merged morph-vertex space.
    """
    __slots__ = ("serial_number", "base_vertex", "offset")

    def __init__(self, base_vertex: Optional[Vertex] = None, offset=Pos3d()):
        self.serial_number = -1
        self.base_vertex: Optional[Vertex] = base_vertex
        self.offset = Pos3d(*offset)

    def __repr__(self):
        return '<MorphVertex vid(%d) %s >> %s>' % (
            self.base_vertex.serial_number if self.base_vertex else -1,
            tuple(self.base_vertex.position) if self.base_vertex else None,
            tuple(self.offset),
        )


class MorphPart:
    """
    A named set of vertex offsets.

    serial_number is the file position of the morph, the base morph being 0.
    After a load it keeps the position read from the file, and it is assigned
    again by Model.number_morphs() on save. It is not kept in step with
    morph_list() between those points.
    """

    def __init__(self, name: Optional[str] = None, morph_type: MorphType = MorphType.EXTRA):
        self.serial_number = -1
        self.name = I18nText(name)
        self._morph_type = morph_type
        self.morph_vertices: List[MorphVertex] = []

    def __repr__(self):
        return '<Morph(%s) type %s, vertices %d>' % (
            self.name.text, self._morph_type.name, len(self.morph_vertices))

    def __iter__(self) -> Iterator[MorphVertex]:
        return iter(self.morph_vertices)

    @property
    def morph_type(self) -> MorphType:
        return self._morph_type

    @morph_type.setter
    def morph_type(self, morph_type: MorphType):
        if morph_type is None:
            raise ValueError('morph type must not be None')
        self._morph_type = MorphType(morph_type)


##################################################################################
# Physics parameters
class RigidShape:
    """Width doubles as the radius of spheres and capsules."""

    def __init__(self):
        self.shape_type = RigidShapeType.BOX
        self.width = 0.1
        self.height = 0.1
        self.depth = 0.1

    def __repr__(self):
        if self.shape_type is RigidShapeType.SPHERE:
            size = 'r=%s' % self.width
        elif self.shape_type is RigidShapeType.CAPSULE:
            size = 'r=%s, h=%s' % (self.width, self.height)
        else:
            size = 'w=%s, h=%s, d=%s' % (self.width, self.height, self.depth)
        return '<RigidShape %s %s>' % (self.shape_type.name, size)

    @property
    def radius(self) -> float:
        return self.width

    @radius.setter
    def radius(self, radius: float):
        self.width = radius


class DynamicsInfo:
    def __init__(self):
        self.mass = 0.0
        self.damping_position = 0.0
        self.damping_rotation = 0.0
        self.restitution = 0.0
        self.friction = 0.0

    def __repr__(self):
        return '<Dynamics mass=%s, damping(pos)=%s, damping(rot)=%s, restitution=%s, friction=%s>' % (
            self.mass, self.damping_position, self.damping_rotation, self.restitution, self.friction)


class RigidGroup:
    """A collision group. Numbered 1-16 externally, serial 0-15 internally."""

    def __init__(self):
        self.serial_number = -1
        self.rigids: List[RigidInfo] = []

    def __repr__(self):
        return '<RigidGroup(%d) [%s]>' % (
            self.group_number, ', '.join(r.name.text for r in self.rigids))

    def __iter__(self) -> Iterator[RigidInfo]:
        return iter(self.rigids)

    @property
    def group_number(self) -> int:
        return self.serial_number + 1


class RigidInfo:
    def __init__(self, name: Optional[str] = None):
        self.serial_number = -1
        self.name = I18nText(name)
        self.behavior_type = RigidBehaviorType.FOLLOWBONE
        self.shape = RigidShape()
        self.position = Pos3d()
        self.rotation = Rad3d()
        self.linked_bone: Optional[BoneInfo] = None
        self.dynamics = DynamicsInfo()
        self.rigid_group: Optional[RigidGroup] = None
        # groups this body does not collide with
        self.through_groups: List[RigidGroup] = []

    def __repr__(self):
        return '<Rigid(%s) bone %s, %s, %s, %s, %s, %s, through [%s]>' % (
            self.name.text,
            self.linked_bone.name.text if self.linked_bone else 'NOBONE',
            self.shape,
            tuple(self.position),
            tuple(self.rotation),
            self.dynamics,
            self.behavior_type.name,
            ' '.join(str(g.group_number) for g in self.through_groups),
        )

    def set_rigid_group(self, group: RigidGroup) -> None:
        """Move this body into group, keeping both groups' member lists in sync."""
        if self.rigid_group is group:
            return
        if self.rigid_group is not None:
            self.rigid_group.rigids[:] = [r for r in self.rigid_group.rigids if r is not self]
        self.rigid_group = group
        if group is not None:
            group.rigids.append(self)

    def collides_with(self, group: RigidGroup) -> bool:
        return not any(g is group for g in self.through_groups)


class TripletRange:
    """Independent X/Y/Z ranges; each keeps from <= to."""

    def __init__(self):
        self.x_from = self.x_to = 0.0
        self.y_from = self.y_to = 0.0
        self.z_from = self.z_to = 0.0

    def __repr__(self):
        return '<TripletRange x[%s, %s] y[%s, %s] z[%s, %s]>' % (
            self.x_from, self.x_to, self.y_from, self.y_to, self.z_from, self.z_to)

    def set_x_range(self, a: float, b: float):
        self.x_from, self.x_to = min(a, b), max(a, b)

    def set_y_range(self, a: float, b: float):
        self.y_from, self.y_to = min(a, b), max(a, b)

    def set_z_range(self, a: float, b: float):
        self.z_from, self.z_to = min(a, b), max(a, b)

    def is_valid_x(self, v: float) -> bool:
        return self.x_from <= v <= self.x_to

    def is_valid_y(self, v: float) -> bool:
        return self.y_from <= v <= self.y_to

    def is_valid_z(self, v: float) -> bool:
        return self.z_from <= v <= self.z_to

    def is_valid(self, x: float, y: float, z: float) -> bool:
        return self.is_valid_x(x) and self.is_valid_y(y) and self.is_valid_z(z)


class JointInfo:
    def __init__(self, name: Optional[str] = None):
        self.serial_number = -1
        self.name = I18nText(name)
        self.rigid_a: Optional[RigidInfo] = None
        self.rigid_b: Optional[RigidInfo] = None
        self.position = Pos3d()
        self.rotation = Rad3d()
        self.position_range = TripletRange()
        self.rotation_range = TripletRange()
        self.elastic_position = Pos3d()
        self.elastic_rotation = Deg3d()

    def __repr__(self):
        return '<Joint(%s) [%s <=> %s] %s, %s>' % (
            self.name.text,
            self.rigid_a.name.text if self.rigid_a else None,
            self.rigid_b.name.text if self.rigid_b else None,
            tuple(self.position),
            tuple(self.rotation),
        )

    def set_rigid_pair(self, rigid_a: RigidInfo, rigid_b: RigidInfo) -> None:
        if rigid_a is None or rigid_b is None:
            raise ValueError('joint rigid bodies must not be None')
        self.rigid_a = rigid_a
        self.rigid_b = rigid_b


################################################################################
# Model Root Class
################################################################################
class Model:
    DEFAULT_HEADER_VERSION = 1.0
    MORPH_TYPES = (MorphType.EYEBROW, MorphType.EYE, MorphType.LIP, MorphType.EXTRA)

    def __init__(self):
        self.header_version: float = self.DEFAULT_HEADER_VERSION
        self.name = I18nText()
        self.description = I18nText()

        self.vertices: SerialList[Vertex] = SerialList()
        self.surfaces: SerialList[Surface] = SerialList()
        self.materials: SerialList[Material] = SerialList()
        self.bones: SerialList[BoneInfo] = SerialList()
        self.bone_groups: SerialList[BoneGroup] = SerialList([DefaultBoneGroup(self)])
        self.ik_chains: List[IKChain] = []

        # Non-base morphs by type. The base morph is derived on export.
        self.morph_map: Dict[MorphType, List[MorphPart]] = {t: [] for t in self.MORPH_TYPES}

        self.rigids: SerialList[RigidInfo] = SerialList()
        self.rigid_groups: SerialList[RigidGroup] = SerialList(RigidGroup() for _ in range(RIGIDGROUP_FIXEDNUM))
        self.joints: SerialList[JointInfo] = SerialList()

        self._toon_map = ToonMap()

    def __repr__(self):
        return '<Model name %s, vertices %d, surfaces %d, materials %d, bones %d, morphs %d, rigids %d, joints %d>' % (
            self.name.text,
            len(self.vertices),
            len(self.surfaces),
            len(self.materials),
            len(self.bones),
            len(self.morph_list()),
            len(self.rigids),
            len(self.joints),
        )

    ################################################################################
    # Toon map
    @property
    def toon_map(self) -> ToonMap:
        return self._toon_map

    @toon_map.setter
    def toon_map(self, toon_map: ToonMap):
        self._toon_map = toon_map
        for mat in self.materials:
            mat.shade_info.toon_map = toon_map

    def add_material(self, material: Material) -> Material:
        material.shade_info.toon_map = self._toon_map
        self.materials.append(material)
        return material

    ################################################################################
    # Bone groups
    @property
    def default_bone_group(self) -> BoneGroup:
        return self.bone_groups[0]

    def explicit_bone_groups(self) -> List[BoneGroup]:
        return [g for g in self.bone_groups if not g.is_default]

    def default_group_bones(self) -> List[BoneInfo]:
        """Bones that no explicit group lists, in bone order."""
        grouped = set()
        for group in self.explicit_bone_groups():
            grouped.update(id(b) for b in group.bones)
        return [b for b in self.bones if id(b) not in grouped]

    def add_bone_group(self, name: str) -> BoneGroup:
        group = BoneGroup(name)
        self.bone_groups.append(group)
        return group

    ################################################################################
    # Morphs
    def morph_list(self) -> List[MorphPart]:
        """All non-base morphs, grouped by type in type order."""
        return [part for t in self.MORPH_TYPES for part in self.morph_map.get(t, [])]

    def add_morph(self, part: MorphPart) -> MorphPart:
        if part.morph_type.is_base():
            raise ValueError('the base morph is derived from the other morphs')
        self.morph_map.setdefault(part.morph_type, []).append(part)
        return part

    def number_morphs(self) -> List[MorphPart]:
        """Assign file serial numbers to morphs. Serial 0 is the base morph."""
        parts = self.morph_list()
        for idx, part in enumerate(parts, start=1):
            part.serial_number = idx
        return parts

    def merge_morph_vertex(self) -> List[MorphVertex]:
        """
        Build the base morph vertex list: every vertex moved by any morph,
        once, sorted by vertex serial number. Every MorphVertex of every morph
        gets the merged-space number of its vertex.
        """
        result: List[MorphVertex] = []
        merged = set()
        for part in self.morph_list():
            for mv in part:
                if mv.base_vertex is None:
                    raise ValueError(f'morph {part.name.text} has a morph vertex without vertex')
                if id(mv.base_vertex) in merged:
                    continue
                merged.add(id(mv.base_vertex))
                result.append(mv)

        result.sort(key=lambda mv: mv.base_vertex.serial_number)
        numbered = {}
        for idx, mv in enumerate(result):
            numbered[id(mv.base_vertex)] = idx

        for part in self.morph_list():
            for mv in part:
                mv.serial_number = numbered[id(mv.base_vertex)]

        return result

    ################################################################################
    def has_global_text(self) -> bool:
        """True if any English text exists, so the English section must be written."""
        if self.name.has_global() or self.description.has_global():
            return True
        if any(b.name.has_global() for b in self.bones):
            return True
        if any(p.name.has_global() for p in self.morph_list()):
            return True
        if any(g.name.has_global() for g in self.bone_groups):
            return True
        return False

    ################################################################################
    # Helper functions for managing model elements
    ################################################################################
    def remove_material(self, material: Material) -> None:
        """Remove a material and its surfaces, then drop vertices no surface uses."""
        if not any(m is material for m in self.materials):
            raise ValueError('Material not found in model.')
        self.materials.remove(material)
        self.trimming()

    def trimming(self) -> None:
        """
        Make the surface and vertex lists exactly what the materials use.
        Surfaces are rebuilt from the material surface lists in order.
        Vertices keep their order; vertices referenced by a surface but not
        yet listed are appended, unreferenced ones are dropped together with
        any morph vertex that moves them.
        """
        surfaces: List[Surface] = []
        seen = set()
        for mat in self.materials:
            for surface in mat.surfaces:
                if surface is None or id(surface) in seen:
                    continue
                seen.add(id(surface))
                surfaces.append(surface)
        self.surfaces[:] = surfaces

        used = {id(v) for s in surfaces for v in s if v is not None}
        vertices = [v for v in self.vertices if v is not None and id(v) in used]
        listed = {id(v) for v in vertices}
        for surface in surfaces:
            for v in surface:
                if v is not None and id(v) not in listed:
                    listed.add(id(v))
                    vertices.append(v)
        self.vertices[:] = vertices

        for part in self.morph_list():
            part.morph_vertices = [mv for mv in part.morph_vertices if id(mv.base_vertex) in listed]
