import pytest

import pypmd
from conftest import build_sample_model, dump_sections, reload
from pmdmodel import Model, MorphType, BoneType


def serials(items):
    return [item.serial_number if item is not None else None for item in items]


def test_bytes_are_stable(sample_bytes):
    assert pypmd.dumps(pypmd.loads(sample_bytes)) == sample_bytes


def test_file_roundtrip(tmp_path, sample_model):
    path = str(tmp_path / 'sample.pmd')
    pypmd.save(path, sample_model)
    model = pypmd.load(path)
    assert pypmd.dumps(model) == pypmd.dumps(sample_model)


def test_header_and_names(sample_model):
    model = reload(sample_model)
    assert model.header_version == 1.0
    assert (model.name.primary, model.name.global_text) == ('サンプル', 'Sample')
    assert model.description.primary == '説明\n二行目'
    assert [b.name.primary for b in model.bones] == [b.name.primary for b in sample_model.bones]


def test_geometry(sample_model):
    model = reload(sample_model)
    for old, new in zip(sample_model.vertices, model.vertices):
        assert new.position == old.position
        assert new.normal == old.normal
        assert new.uv == old.uv
        assert new.weight_a == old.weight_a
        assert new.edge_appearance == old.edge_appearance
        assert new.bone_a.serial_number == old.bone_a.serial_number
        assert new.bone_b.serial_number == old.bone_b.serial_number
    assert len(model.vertices) == len(sample_model.vertices)

    assert [serials(s.vertices) for s in model.surfaces] == [serials(s.vertices) for s in sample_model.surfaces]
    assert [serials(m.surfaces) for m in model.materials] == [serials(m.surfaces) for m in sample_model.materials]
    for old, new in zip(sample_model.materials, model.materials):
        assert new.diffuse == old.diffuse
        assert new.specular == old.specular
        assert new.ambient == old.ambient
        assert new.shininess == old.shininess
        assert new.edge_appearance == old.edge_appearance
        assert new.shade_info.toon_index == old.shade_info.toon_index
        assert (new.shade_info.texture_file, new.shade_info.spheremap_file) == \
            (old.shade_info.texture_file, old.shade_info.spheremap_file)


def test_skeleton(sample_model):
    model = reload(sample_model)
    for old, new in zip(sample_model.bones, model.bones):
        assert new.bone_type is old.bone_type
        assert new.position == old.position
        assert serials([new.prev_bone, new.next_bone]) == serials([old.prev_bone, old.next_bone])
        if old.bone_type is BoneType.LINKEDROT:
            assert new.rotation_ratio == old.rotation_ratio
        else:
            assert serials([new.ik_bone]) == serials([old.ik_bone])

    old_chain, = sample_model.ik_chains
    new_chain, = model.ik_chains
    assert new_chain.ik_bone.serial_number == old_chain.ik_bone.serial_number
    assert serials(new_chain.chained_bones) == serials(old_chain.chained_bones)

    assert [g.name.primary for g in model.explicit_bone_groups()] == ['体', '足']
    assert [serials(g.bones) for g in model.bone_groups] == [serials(g.bones) for g in sample_model.bone_groups]


def test_morphs(sample_model):
    model = reload(sample_model)
    for morph_type in Model.MORPH_TYPES:
        old_parts = sample_model.morph_map[morph_type]
        new_parts = model.morph_map[morph_type]
        assert [p.name.primary for p in new_parts] == [p.name.primary for p in old_parts]
        for old, new in zip(old_parts, new_parts):
            assert new.morph_type is morph_type
            assert [mv.base_vertex.serial_number for mv in new] == [mv.base_vertex.serial_number for mv in old]
            assert [mv.offset for mv in new] == [mv.offset for mv in old]
    assert MorphType.BASE not in model.morph_map


def test_physics(sample_model):
    model = reload(sample_model)
    assert model.toon_map == sample_model.toon_map
    for old, new in zip(sample_model.rigids, model.rigids):
        assert new.name.primary == old.name.primary
        assert serials([new.linked_bone, new.rigid_group]) == serials([old.linked_bone, old.rigid_group])
        assert serials(new.through_groups) == serials(old.through_groups)
        assert new.shape.shape_type is old.shape.shape_type
        # unset sizes keep the 0.1 default, which float32 rounds
        assert (new.shape.width, new.shape.height, new.shape.depth) == \
            pytest.approx((old.shape.width, old.shape.height, old.shape.depth))
        assert new.position == old.position
        assert new.rotation == old.rotation
        assert vars(new.dynamics) == vars(old.dynamics)
        assert new.behavior_type is old.behavior_type
    assert len(model.rigids) == 3

    old_joint, = sample_model.joints
    new_joint, = model.joints
    assert serials([new_joint.rigid_a, new_joint.rigid_b]) == [0, 1]
    assert vars(new_joint.position_range) == vars(old_joint.position_range)
    assert vars(new_joint.rotation_range) == vars(old_joint.rotation_range)
    assert new_joint.elastic_position == old_joint.elastic_position
    assert new_joint.elastic_rotation == old_joint.elastic_rotation


@pytest.mark.parametrize("english, toon, physics", [
    (False, False, False),
    (True, False, False),
    (True, True, False),
    (True, True, True),
])
def test_optional_sections(english, toon, physics):
    data = dump_sections(build_sample_model(), english, toon, physics)
    model = pypmd.loads(data)

    assert len(model.bones) == 8
    assert len(model.morph_list()) == 4
    assert (model.name.global_text == 'Sample') is english
    assert model.toon_map.is_default_map() is not toon
    assert len(model.rigids) == (3 if physics else 0)
    assert len(model.joints) == (1 if physics else 0)


def test_reload_is_a_fixed_point(sample_model):
    once = reload(sample_model)
    twice = reload(once)
    assert pypmd.dumps(twice) == pypmd.dumps(once)


def test_trimmed_model_roundtrip(sample_model):
    sample_model.remove_material(sample_model.materials[1])
    model = reload(sample_model)
    assert len(model.vertices) == 4
    assert len(model.surfaces) == 2
    assert [p.morph_vertices for p in model.morph_map[MorphType.EXTRA]] == [[]]
