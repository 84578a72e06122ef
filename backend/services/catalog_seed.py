from sqlalchemy.orm import Session

from db.database import SessionLocal
from db.models import ExerciseItem, FoodItem
from services.catalog_service import add_exercise_item, add_food_item


# Per-100g reference values (TACO table, rounded).
DEFAULT_FOODS: list[dict] = [
    {"name": "Arroz branco cozido", "aliases": ["arroz", "arroz branco"], "calories": 128, "protein_g": 2.5, "carbs_g": 28.1, "fat_g": 0.2, "fiber_g": 1.6,
     "measures": {"colher de sopa": 25, "escumadeira": 90, "xicara": 160}},
    {"name": "Feijão carioca cozido", "aliases": ["feijao", "feijao carioca"], "calories": 76, "protein_g": 4.8, "carbs_g": 13.6, "fat_g": 0.5, "fiber_g": 8.5,
     "measures": {"concha": 140, "colher de sopa": 20}},
    {"name": "Peito de frango grelhado", "aliases": ["frango", "frango grelhado", "peito de frango"], "calories": 159, "protein_g": 32.0, "carbs_g": 0.0, "fat_g": 2.5,
     "measures": {"file": 100, "unidade": 100}},
    {"name": "Ovo cozido", "aliases": ["ovo", "ovos"], "calories": 146, "protein_g": 13.3, "carbs_g": 0.6, "fat_g": 9.5,
     "measures": {"unidade": 50}},
    {"name": "Banana prata", "aliases": ["banana"], "calories": 98, "protein_g": 1.3, "carbs_g": 26.0, "fat_g": 0.1, "fiber_g": 2.0,
     "measures": {"unidade": 70}},
    {"name": "Maçã", "aliases": ["maca"], "calories": 56, "protein_g": 0.3, "carbs_g": 15.2, "fat_g": 0.0, "fiber_g": 1.3,
     "measures": {"unidade": 130}},
    {"name": "Pão francês", "aliases": ["pao", "pao frances", "paozinho"], "calories": 300, "protein_g": 8.0, "carbs_g": 58.6, "fat_g": 3.1, "fiber_g": 2.3,
     "measures": {"unidade": 50, "fatia": 25}},
    {"name": "Leite integral", "aliases": ["leite"], "calories": 61, "protein_g": 3.2, "carbs_g": 4.6, "fat_g": 3.3,
     "measures": {"copo": 240, "xicara": 240}},
    {"name": "Café sem açúcar", "aliases": ["cafe", "cafezinho"], "calories": 3, "protein_g": 0.1, "carbs_g": 0.0, "fat_g": 0.0,
     "measures": {"xicara": 50, "copo": 200}},
    {"name": "Pera", "aliases": [], "calories": 53, "protein_g": 0.6, "carbs_g": 14.0, "fat_g": 0.1, "fiber_g": 3.0,
     "measures": {"unidade": 130}},
]

DEFAULT_EXERCISES: list[dict] = [
    {"name": "Corrida", "aliases": ["correr", "corri", "running"], "met_light": 6.0, "met_moderate": 8.3, "met_intense": 11.0, "category": "cardio"},
    {"name": "Caminhada", "aliases": ["caminhar", "caminhei", "andar"], "met_light": 2.8, "met_moderate": 3.5, "met_intense": 5.0, "category": "cardio"},
    {"name": "Ciclismo", "aliases": ["bicicleta", "bike", "pedalar", "pedalei"], "met_light": 4.0, "met_moderate": 6.8, "met_intense": 10.0, "category": "cardio"},
    {"name": "Natação", "aliases": ["nadar", "nadei"], "met_light": 5.8, "met_moderate": 7.0, "met_intense": 9.8, "category": "cardio"},
    {"name": "Musculação", "aliases": ["academia", "malhar", "malhei", "treino de forca"], "met_light": 3.5, "met_moderate": 5.0, "met_intense": 6.0, "category": "strength"},
    {"name": "Yoga", "aliases": ["ioga"], "met_light": 2.5, "met_moderate": 3.0, "met_intense": 4.0, "category": "flexibility"},
    {"name": "Crossfit", "aliases": ["cross fit"], "met_light": 5.0, "met_moderate": 8.0, "met_intense": 12.0, "category": "strength"},
    {"name": "Futebol", "aliases": ["bola", "pelada"], "met_light": 5.0, "met_moderate": 7.0, "met_intense": 10.0, "category": "sport"},
]


def seed_catalog(db: Session) -> tuple[int, int]:
    """Insert the default catalog into empty tables. Returns (foods, exercises) added."""
    foods_added = 0
    exercises_added = 0
    if db.query(FoodItem.id).first() is None:
        for food in DEFAULT_FOODS:
            add_food_item(db, **food)
            foods_added += 1
    if db.query(ExerciseItem.id).first() is None:
        for exercise in DEFAULT_EXERCISES:
            add_exercise_item(db, **exercise)
            exercises_added += 1
    return foods_added, exercises_added


def ensure_default_catalog() -> None:
    db: Session = SessionLocal()
    try:
        seed_catalog(db)
        db.commit()
    finally:
        db.close()
