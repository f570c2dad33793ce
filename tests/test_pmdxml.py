import io
import xml.etree.ElementTree as ET

import pytest

from pmdxml import PmdXmlExporter, NS_PMDXML

NS = '{%s}' % NS_PMDXML


def to_xml(model, indent=2) -> bytes:
    buf = io.BytesIO()
    PmdXmlExporter(buf, indent=indent).dump_model(model)
    return buf.getvalue()


@pytest.fixture
def root(sample_model):
    return ET.fromstring(to_xml(sample_model))


def find_all(elem, path):
    return elem.findall('/'.join(NS + tag for tag in path.split('/')))


def test_document_header(sample_model):
    data = to_xml(sample_model)
    assert data.startswith(b"<?xml version='1.0' encoding='utf-8'?>")
    assert b'\n  <' in data


def test_no_indent(sample_model):
    data = to_xml(sample_model, indent=0)
    body = data.split(b'\n', 1)[1]
    assert b'\n' not in body


def test_root(root):
    assert root.tag == NS + 'pmdModel'
    assert root.get('name') == 'サンプル'
    (i18n,) = find_all(root, 'i18nName')
    assert (i18n.get('lang'), i18n.get('name')) == ('en', 'Sample')
    generator = [m for m in find_all(root, 'meta') if m.get('name') == 'generator']
    assert generator[0].get('content') == 'pmdtool'


def test_description_line_breaks(root):
    primary, english = find_all(root, 'description')
    assert primary.text == '説明'
    (br,) = list(primary)
    assert br.tag == NS + 'br'
    assert br.tail == '二行目'
    assert english.get('lang') == 'en'
    assert english.text == 'Description'


def test_materials(root):
    skin, hair = find_all(root, 'materialList/material')
    assert skin.get('surfaceGroupIdRef') == 'sg0'
    assert skin.find(NS + 'toon').get('toonFileIdRef') == 'tf0'
    assert skin.find(NS + 'textureFile').get('winFileName') == 'body.bmp'
    assert skin.find(NS + 'spheremapFile').get('winFileName') == 'metal.sph'
    assert float(skin.find(NS + 'diffuse').get('alpha')) == 0.875
    assert hair.get('showEdge') == 'false'
    assert hair.find(NS + 'toon') is None

    groups = find_all(root, 'surfaceGroupList/surfaceGroup')
    assert [len(list(g)) for g in groups] == [2, 1]
    first = groups[0][0]
    assert [first.get(f'vtxIdRef{n}') for n in (1, 2, 3)] == ['vtx0', 'vtx1', 'vtx2']


def test_toon_map(root):
    toons = find_all(root, 'toonMap/toonDef')
    assert len(toons) == 10
    assert toons[3].get('winFileName') == 'mytoon.bmp'
    assert toons[3].get('toonFileId') == 'tf3'


def test_bones(root):
    bones = find_all(root, 'boneList/bone')
    assert len(bones) == 8
    center, upper = bones[:2]
    assert center.get('type') == 'ROTMOV'
    assert center.find(NS + 'boneChain').get('prevBoneIdRef') is None
    assert upper.find(NS + 'boneChain').get('prevBoneIdRef') == 'bn0'
    assert upper.find(NS + 'boneChain').get('nextBoneIdRef') == 'bn2'

    eye = bones[7]
    assert eye.find(NS + 'rotationRatio').get('ratio') == '20'
    assert eye.find(NS + 'ikBone') is None
    assert bones[4].find(NS + 'ikBone').get('boneIdRef') == 'bn3'


def test_bone_groups_and_ik(root):
    groups = find_all(root, 'boneGroupList/boneGroup')
    assert [g.get('name') for g in groups] == ['体', '足']
    assert [m.get('boneIdRef') for m in groups[0]] == ['bn1', 'bn2']

    (chain,) = find_all(root, 'ikChainList/ikChain')
    assert chain.get('ikBoneIdRef') == 'bn3'
    assert [c.get('boneIdRef') for c in chain] == ['bn6', 'bn5', 'bn4']


def test_morphs(root):
    morphs = find_all(root, 'morphList/morph')
    assert [m.get('type') for m in morphs] == ['EYEBROW', 'EYE', 'LIP', 'EXTRA']
    blink = morphs[1]
    vertices = blink.findall(NS + 'morphVertex')
    assert [v.get('vtxIdRef') for v in vertices] == ['vtx1', 'vtx2']
    assert float(vertices[0].get('yOff')) == -0.5


def test_physics(root):
    rigids = find_all(root, 'rigidList/rigid')
    assert len(rigids) == 3
    head, hair, free = rigids
    assert float(head.find(NS + 'rigidShapeSphere').get('radius')) == 1.5
    assert [t.get('rigidGroupIdRef') for t in hair.findall(NS + 'throughRigidGroup')] == ['rg1', 'rg16']
    assert free.find(NS + 'linkedBone') is None
    assert free.find(NS + 'rigidShapeCapsule') is not None

    groups = find_all(root, 'rigidGroupList/rigidGroup')
    assert len(groups) == 16
    assert [m.get('rigidIdRef') for m in groups[1]] == ['rd1']

    (joint,) = find_all(root, 'jointList/joint')
    pair = joint.find(NS + 'jointedRigidPair')
    assert (pair.get('rigidIdRef1'), pair.get('rigidIdRef2')) == ('rd0', 'rd1')
    limits = joint.find(NS + 'limitPosition')
    assert (float(limits.get('xFrom')), float(limits.get('xTo'))) == (-1.0, 1.0)


def test_vertices(root):
    vertices = find_all(root, 'vertexList/vertex')
    assert len(vertices) == 5
    last = vertices[4]
    assert last.get('showEdge') == 'false'
    skinning = last.find(NS + 'skinning')
    assert (skinning.get('boneIdRef1'), skinning.get('boneIdRef2')) == ('bn1', 'bn0')
    assert skinning.get('weightBalance') == '80'
