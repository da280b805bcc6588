"""
Conversión del guion de narración en documentos Narration, Scene y Shot.
Función pura: no toca el almacén.
"""
from dataclasses import dataclass

from ..domain.models import Narration, NarrationScript, Scene, Shot, TaskStatus


@dataclass
class NarrationBatch:
    """Documentos de una versión de narración, listos para guardarse juntos."""
    narration: Narration
    scenes: list[Scene]
    shots: list[Shot]

    @property
    def documents(self) -> list:
        return [self.narration, *self.scenes, *self.shots]


def convert_to_scenes_and_shots(
    narration: Narration, script: NarrationScript
) -> tuple[list[Scene], list[Shot]]:
    """
    Crea las escenas y planos de una narración.

    Los ids son estables dentro de la versión: `{narracion}-scene-{n}-v{ver}` y
    `{narracion}-shot-{escena}-{plano}-v{ver}`. `sequence` empieza en 1 dentro
    de cada escena e `index` en 1 dentro de toda la narración.

    Args:
        narration: Narración dueña (ya con id y versión)
        script: Guion validado

    Returns:
        Tupla (escenas, planos)
    """
    scenes: list[Scene] = []
    shots: list[Shot] = []
    version = narration.version
    global_index = 1

    for scene_seq, scene_script in enumerate(script.scenes, start=1):
        scene_number = scene_script.scene_number or str(scene_seq)
        scene = Scene(
            id=f"{narration.id}-scene-{scene_number}-v{version}",
            narration_id=narration.id,
            chapter_id=narration.chapter_id,
            scene_number=scene_number,
            description=scene_script.description,
            image_prompt=scene_script.image_prompt,
            narration=scene_script.narration,
            sequence=scene_seq,
            version=version,
            status=TaskStatus.COMPLETED,
        )
        # Un número de escena repetido no debe pisar otra escena
        if any(s.id == scene.id for s in scenes):
            scene.id = f"{narration.id}-scene-{scene_number}-{scene_seq}-v{version}"
        scenes.append(scene)

        for shot_seq, shot_script in enumerate(scene_script.shots, start=1):
            shot_number = shot_script.closeup_number or str(shot_seq)
            shots.append(Shot(
                id=f"{narration.id}-shot-{scene_number}-{shot_number}-v{version}",
                scene_id=scene.id,
                scene_number=scene_number,
                narration_id=narration.id,
                chapter_id=narration.chapter_id,
                shot_number=shot_number,
                character=shot_script.character,
                narration=shot_script.narration,
                image_prompt=shot_script.image_prompt or shot_script.image,
                video_prompt=shot_script.video_prompt,
                camera_movement=shot_script.camera_movement,
                sound_effect=shot_script.sound_effect,
                duration=shot_script.duration,
                sequence=shot_seq,
                index=global_index,
                version=version,
                status=TaskStatus.COMPLETED,
            ))
            if any(s.id == shots[-1].id for s in shots[:-1]):
                shots[-1].id = f"{narration.id}-shot-{global_index}-v{version}"
            global_index += 1

    return scenes, shots


def build_narration_batch(
    chapter_id: str,
    novel_id: str,
    version: int,
    script: NarrationScript,
    prompt: str = "",
) -> NarrationBatch:
    """Crea la narración completada con sus escenas y planos."""
    narration = Narration(
        chapter_id=chapter_id,
        novel_id=novel_id,
        version=version,
        status=TaskStatus.COMPLETED,
        prompt=prompt,
        chapter_info=script.chapter_info,
        characters=script.characters,
        props=script.props,
    )
    scenes, shots = convert_to_scenes_and_shots(narration, script)
    return NarrationBatch(narration=narration, scenes=scenes, shots=shots)
