# -*- coding: utf-8 -*-
"""
pypmd.py - Load and save PMD model files.

    model = pypmd.load('model.pmd')
    pypmd.save('out.pmd', model)
"""
from __future__ import annotations

import io
import logging

from pmdstream import FileReadStream, FileWriteStream
from pmdloader import PmdLoader
from pmdexporter import PmdExporter
from pmdmodel import Model


def load(path: str) -> Model:
    with FileReadStream(open(path, 'rb')) as fs:
        loader = PmdLoader(fs)
        model = loader.load()
        if loader.has_more_data:
            logging.info(f"{path} has data this loader does not know")
        return model


def loads(data: bytes) -> Model:
    with FileReadStream(io.BytesIO(data)) as fs:
        return PmdLoader(fs).load()


def save(path: str, model: Model) -> None:
    # encode fully before touching the target file
    data = dumps(model)
    with open(path, 'wb') as f:
        f.write(data)
    logging.debug(f"Saved {len(data)} bytes to {path}")


def dumps(model: Model) -> bytes:
    buffer = io.BytesIO()
    fs = FileWriteStream(buffer)
    PmdExporter(fs).dump_model(model)
    return buffer.getvalue()
