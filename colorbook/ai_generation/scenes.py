"""
Default catalog of scene fragments used for colouring book pages.

Each entry completes the sentence "Show the subject ...".
"""

SCENE_PROMPTS: tuple[str, ...] = (
    "riding a bicycle through a sunny park",
    "building a sandcastle at the beach",
    "flying a kite on a windy hill",
    "reading a book under a big oak tree",
    "baking cookies in a cozy kitchen",
    "exploring a jungle with binoculars",
    "sailing a small boat on a calm lake",
    "planting flowers in a garden",
    "ice skating on a frozen pond",
    "camping beside a tent under the stars",
    "playing soccer in a grassy field",
    "painting a picture at an easel",
    "riding a friendly dragon over the mountains",
    "as an astronaut floating next to a rocket",
    "as a firefighter next to a fire truck",
    "as a doctor listening to a teddy bear's heartbeat",
    "as a pilot waving from an airplane cockpit",
    "diving under the sea with turtles and fish",
    "having a tea party with stuffed animals",
    "building a snowman with a scarf and hat",
    "jumping in puddles with rain boots",
    "climbing a tree house ladder",
    "playing drums in a marching parade",
    "feeding ducks at a pond",
    "on a treasure hunt holding a map",
    "as a knight with a cardboard shield",
    "dancing in a field of sunflowers",
    "visiting a farm with cows and chickens",
    "riding a carousel horse at a fair",
    "stargazing through a telescope",
    "splashing in a swimming pool with a float ring",
    "walking a puppy on a leash",
    "picking apples in an orchard",
    "as a chef holding a giant pizza",
    "roller skating along a boardwalk",
    "playing in a pile of autumn leaves",
    "exploring a castle with tall towers",
    "riding a train through the countryside",
    "hiking with a backpack on a forest trail",
    "blowing bubbles in the backyard",
)
